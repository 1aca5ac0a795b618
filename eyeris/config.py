"""Application-wide configuration models and persistence helpers."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

MIB = 1024 * 1024


class RateLimitMode(str, Enum):
    """What happens when a provider has no free permit."""

    WAIT = "wait"
    REJECT = "reject"


class ProviderSettings(BaseModel):
    """Endpoint, credentials and limits for a single vision backend."""

    model_config = ConfigDict(frozen=True)

    adapter: str | None = Field(
        default=None,
        description="Adapter implementation to use; defaults to the provider's own name.",
    )
    base_url: str = Field(description="Base URL of the provider HTTP API.")
    api_key: str | None = Field(
        default=None,
        description="Bearer token sent to the provider, if it requires one.",
    )
    api_key_env: str | None = Field(
        default=None,
        description="Environment variable consulted when api_key is not set.",
    )
    default_model: str = Field(description="Model used when a request does not name one.")
    allowed_models: tuple[str, ...] = Field(
        default=(),
        description="If non-empty, the only model names accepted for this provider.",
    )
    timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout (seconds) for a single HTTP call to the provider.",
    )
    max_tokens: int = Field(
        default=1000,
        ge=16,
        le=16384,
        description="Maximum number of tokens requested from the provider.",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Sampling temperature passed to the provider.",
    )
    max_concurrency: int = Field(
        default=10,
        ge=1,
        le=1024,
        description="Ceiling of concurrent in-flight calls to this provider.",
    )
    requests_per_window: int | None = Field(
        default=None,
        ge=1,
        description="Optional ceiling of calls started per time window.",
    )
    window_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Length of the sliding window used by requests_per_window.",
    )

    @field_validator("base_url")
    @classmethod
    def _normalise_base_url(cls, value: str) -> str:
        base = value.strip()
        if not base:
            raise ValueError("Provider base URL must not be empty.")
        if "://" not in base:
            raise ValueError("Provider base URL must include a scheme such as http://localhost:11434.")
        return base.rstrip("/")

    @field_validator("default_model")
    @classmethod
    def _require_model(cls, value: str) -> str:
        model = value.strip()
        if not model:
            raise ValueError("A default model must be configured for every provider.")
        return model

    def resolved_api_key(self) -> str | None:
        """Return the configured key, falling back to the named environment variable."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.getenv(self.api_key_env) or None
        return None


def default_provider_settings() -> dict[str, dict[str, Any]]:
    return {
        "openai": {
            "base_url": "https://api.openai.com/v1",
            "api_key_env": "OPENAI_API_KEY",
            "default_model": "gpt-4o-mini",
        },
        "ollama": {
            "base_url": "http://127.0.0.1:11434",
            "default_model": "moondream",
        },
    }


class AppConfig(BaseModel):
    """Validates and stores runtime settings for the analysis service."""

    model_config = ConfigDict(frozen=True)

    default_provider: str = Field(
        default="ollama",
        description="Provider used when a request does not name one.",
    )
    providers: dict[str, ProviderSettings] = Field(
        default_factory=lambda: {
            name: ProviderSettings(**values) for name, values in default_provider_settings().items()
        },
        description="Configured provider backends keyed by name.",
    )
    rate_limit_mode: RateLimitMode = Field(
        default=RateLimitMode.WAIT,
        description="Queue callers until a permit frees up, or reject them immediately.",
    )
    permit_timeout: float = Field(
        default=10.0,
        ge=0.0,
        le=600.0,
        description="Longest time (seconds) a request waits for a provider permit.",
    )
    max_retries: int = Field(
        default=1,
        ge=0,
        le=1,
        description="Retries allowed after a provider timeout or transport failure.",
    )
    retry_delay: float = Field(
        default=0.0,
        ge=0.0,
        le=60.0,
        description="Fixed pause (seconds) before the retry.",
    )
    request_timeout: float = Field(
        default=120.0,
        gt=0.0,
        le=3600.0,
        description="Overall deadline (seconds) for a single analysis request.",
    )
    max_upload_bytes: int = Field(
        default=50 * MIB,
        ge=1,
        description="Largest raw image accepted before preprocessing.",
    )
    max_dimension: int = Field(
        default=768,
        ge=16,
        le=8192,
        description="Longest image side (pixels) sent to providers.",
    )
    payload_budget_bytes: int = Field(
        default=4 * MIB,
        ge=1024,
        description="Largest encoded image sent to providers.",
    )
    jpeg_quality: int = Field(
        default=85,
        ge=1,
        le=95,
        description="Initial JPEG quality used when re-encoding.",
    )
    min_jpeg_quality: int = Field(
        default=10,
        ge=1,
        le=95,
        description="Lowest JPEG quality tried before giving up on the budget.",
    )
    jpeg_quality_step: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Quality decrement between encoding attempts.",
    )
    preprocess_workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        le=256,
        description="Worker threads reserved for CPU-bound image preparation.",
    )
    request_workers: int = Field(
        default=16,
        ge=1,
        le=1024,
        description="Worker threads running concurrent analysis requests.",
    )
    generate_thumbnail: bool = Field(
        default=False,
        description="Produce a small brightened JPEG thumbnail alongside the analysis.",
    )
    thumbnail_size: int = Field(
        default=300,
        ge=16,
        le=2048,
        description="Longest thumbnail side in pixels.",
    )
    thumbnail_brightness: float = Field(
        default=1.1,
        gt=0.0,
        le=4.0,
        description="Brightness factor applied to thumbnails.",
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_provider_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "providers" not in data:
            return data
        supplied = data.get("providers") or {}
        merged: dict[str, Any] = {}
        defaults = default_provider_settings()
        for name, values in defaults.items():
            override = supplied.get(name)
            if isinstance(override, ProviderSettings):
                merged[name] = override
            else:
                merged[name] = {**values, **(override or {})}
        for name, values in supplied.items():
            if name not in defaults:
                merged[name] = values
        return {**data, "providers": merged}

    @model_validator(mode="after")
    def _validate_provider_references(self) -> AppConfig:
        if self.default_provider not in self.providers:
            available = ", ".join(sorted(self.providers))
            raise ValueError(
                f"Default provider '{self.default_provider}' is not configured. "
                f"Available: {available}"
            )
        if self.min_jpeg_quality > self.jpeg_quality:
            raise ValueError("min_jpeg_quality must not exceed jpeg_quality.")
        return self

    def provider(self, name: str) -> ProviderSettings:
        return self.providers[name]

    def as_dict(self) -> dict[str, Any]:
        """Serialize the configuration to primitive Python types."""
        return self.model_dump(mode="json")

    @classmethod
    def load(cls, path: Path) -> AppConfig:
        """Load configuration from a YAML or JSON file."""
        data = _read_config_file(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:  # pragma: no cover - pass through details
            raise ValueError(f"Invalid configuration file at {path}: {exc}") from exc

    def save(self, path: Path) -> None:
        """Persist configuration to a YAML file."""
        _write_config_file(path, self.as_dict())


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _write_config_file(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in {".yaml", ".yml"}:
        yaml_text = yaml.safe_dump(
            data,
            allow_unicode=False,
            sort_keys=False,
        )
        path.write_text(yaml_text, encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
