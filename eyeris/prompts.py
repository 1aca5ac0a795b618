"""Instruction templates for each supported analysis format."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidFormat
from .models.base import OutputFormat, PromptPayload

_JSON_SCHEMA = (
    '{"classification": {"primary_category": string, "secondary_categories": string[], '
    '"confidence": number}, '
    '"content": {"main_elements": [{"type": string, "description": string, "location": string}], '
    '"context": {"setting": string, "purpose": string, "time_period": string}}, '
    '"analysis": {"composition": {"layout": string, "style": string}, '
    '"colors": [{"name": string, "hex": string, "dominance": number}], '
    '"mood": {"primary": string, "confidence": number}, "themes": string[]}, '
    '"extracted_text": [{"content": string, "location": string}], '
    '"insights": {"key_observations": string[], "unusual_elements": string[]}}'
)

_JSON_INSTRUCTIONS = (
    "You are an image analysis system operating in strict JSON mode.",
    "Respond with a single JSON object describing the objects, colors, composition, "
    "visible text and mood of the image.",
    "The object must match this structure:",
    _JSON_SCHEMA,
    "Confidence and dominance values are decimal numbers between 0.0 and 1.0.",
    "Colors use # prefixed six digit hex codes such as #FF5733.",
    "Use empty arrays or empty strings when something is not present.",
    "Do not write prose, markdown, code fences or comments.",
    "Start the response with { and end it with }.",
)

_TEMPLATES: dict[OutputFormat, str] = {
    OutputFormat.JSON: " ".join(_JSON_INSTRUCTIONS),
    OutputFormat.CONCISE: (
        "Briefly describe what you see in this image in two or three sentences of plain prose."
    ),
    OutputFormat.DETAILED: (
        "Describe this image in detail. Organise the answer into sections titled Subject, "
        "Setting, Colors and Lighting, Composition, Text, and Mood, covering all visual "
        "elements and any notable features."
    ),
    OutputFormat.LIST: (
        "List the main elements and features present in this image as a numbered list of "
        "short, factual bullet points, one fact per line."
    ),
    OutputFormat.DISCOVERY: "Discover and describe all interesting aspects of this image.",
    OutputFormat.CATEGORY: "Analyze this {subject} image with relevant domain-specific details.",
    OutputFormat.PLATFORM: (
        "Analyze this {subject} content with platform-specific considerations."
    ),
    OutputFormat.CUSTOM: "Analyze this image for the following aspects:\n- {traits}",
}


@dataclass(frozen=True, slots=True)
class PromptSpec:
    """Parsed form of a requested output format."""

    format: OutputFormat
    subject: str | None = None
    traits: tuple[str, ...] = ()


def parse_format(value: str | OutputFormat | PromptSpec) -> PromptSpec:
    """Turn a request format string such as ``json`` or ``category:receipt`` into a spec."""
    if isinstance(value, PromptSpec):
        return value
    if isinstance(value, OutputFormat):
        return _validated(PromptSpec(format=value))
    if not isinstance(value, str):
        raise InvalidFormat(f"Unsupported output format: {value!r}")

    name, _, argument = value.strip().partition(":")
    try:
        output_format = OutputFormat(name.strip().lower())
    except ValueError:
        supported = ", ".join(item.value for item in OutputFormat)
        raise InvalidFormat(
            f"Unsupported output format '{value}'. Supported: {supported}"
        ) from None

    argument = argument.strip()
    if not output_format.is_parameterized:
        if argument:
            raise InvalidFormat(f"Output format '{output_format.value}' takes no parameter.")
        return PromptSpec(format=output_format)
    if output_format is OutputFormat.CUSTOM:
        traits = tuple(item.strip() for item in argument.split(",") if item.strip())
        return _validated(PromptSpec(format=output_format, traits=traits))
    return _validated(PromptSpec(format=output_format, subject=argument or None))


def _validated(spec: PromptSpec) -> PromptSpec:
    if spec.format is OutputFormat.CUSTOM and not spec.traits:
        raise InvalidFormat("The custom format needs at least one trait, e.g. custom:mood,brands.")
    if spec.format in (OutputFormat.CATEGORY, OutputFormat.PLATFORM) and not spec.subject:
        raise InvalidFormat(
            f"The {spec.format.value} format needs a parameter, e.g. {spec.format.value}:receipt."
        )
    return spec


def build_prompt(value: str | OutputFormat | PromptSpec) -> PromptPayload:
    """Render the instruction payload for the requested format."""
    spec = parse_format(value)
    text = _TEMPLATES[spec.format]
    if spec.format.is_parameterized:
        text = text.format(subject=spec.subject or "", traits="\n- ".join(spec.traits))
    return PromptPayload(
        format=spec.format,
        text=text,
        expects_json=spec.format is OutputFormat.JSON,
    )
