"""Data types and interfaces shared across the analysis pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence


class OutputFormat(str, Enum):
    """Analysis output styles a caller can request."""

    JSON = "json"
    CONCISE = "concise"
    DETAILED = "detailed"
    LIST = "list"
    DISCOVERY = "discovery"
    CATEGORY = "category"
    PLATFORM = "platform"
    CUSTOM = "custom"

    @property
    def is_parameterized(self) -> bool:
        return self in (OutputFormat.CATEGORY, OutputFormat.PLATFORM, OutputFormat.CUSTOM)


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    """A single inbound analysis call as received from the front end."""

    image: bytes
    format: str = OutputFormat.JSON.value
    provider: str | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class PreparedImage:
    """Re-encoded, size-bounded image ready to be sent to a provider."""

    data: bytes
    content_type: str
    width: int
    height: int
    original_size: int
    quality: int

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class PromptPayload:
    """Provider-agnostic instruction rendered for one output format."""

    format: OutputFormat
    text: str
    expects_json: bool = False


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counters reported by a provider; zero when not reported."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt: object = None, completion: object = None, total: object = None) -> TokenUsage:
        """Build usage from loosely typed counters, zero-filling anything missing."""
        prompt_tokens = _as_count(prompt)
        completion_tokens = _as_count(completion)
        total_tokens = _as_count(total) or prompt_tokens + completion_tokens
        return cls(prompt_tokens, completion_tokens, total_tokens)

    def as_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


def _as_count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return 0


@dataclass(frozen=True, slots=True)
class ProviderReply:
    """Raw answer returned by a provider adapter."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    """Metadata describing a configured provider."""

    name: str
    adapter: str
    display_name: str
    default_model: str
    base_url: str
    tags: Sequence[str] = ()


@dataclass(slots=True)
class AnalysisResult:
    """Normalized outcome of a successful analysis."""

    analysis: str
    token_usage: TokenUsage
    format: OutputFormat
    provider: str
    model: str
    attempts: int = 1
    thumbnail: bytes | None = None
    extras: dict[str, object] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    """Interface that all provider adapters must satisfy.

    Adapters are constructed once from configuration and shared read-only
    across requests, so ``analyze`` must not mutate adapter state.
    """

    def info(self) -> ProviderInfo:
        """Return metadata describing the provider."""

    def analyze(
        self,
        image: PreparedImage,
        prompt: PromptPayload,
        model: str,
        *,
        timeout: float | None = None,
    ) -> ProviderReply:
        """Send the image and prompt to the backend and return its raw answer."""
