"""String helpers for cleaning provider output."""

from __future__ import annotations


def strip_code_fences(text: str) -> str:
    """Return ``text`` without a surrounding markdown code fence, if it has one."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    parts = stripped.split("```")
    # The second segment holds the payload, possibly prefixed with a language tag.
    if len(parts) < 3:
        return stripped
    candidate = parts[1]
    if "\n" in candidate:
        first_line, remainder = candidate.split("\n", 1)
        if first_line.strip().isalnum() or not first_line.strip():
            return remainder.strip()
        return candidate.strip()
    return candidate.strip()
