"""Lookup of configured provider adapters by name."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from types import MappingProxyType

from ..config import AppConfig, ProviderSettings
from ..errors import InvalidRequest
from ..models.base import ProviderAdapter, ProviderInfo
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter

Factory = Callable[[str, ProviderSettings], ProviderAdapter]
logger = logging.getLogger(__name__)

ADAPTER_FACTORIES: Mapping[str, Factory] = MappingProxyType(
    {
        OpenAIAdapter.adapter_name: OpenAIAdapter,
        OllamaAdapter.adapter_name: OllamaAdapter,
    }
)

_MODEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:/@+-]{0,127}$")


class ProviderRegistry:
    """Adapters built once from configuration and shared read-only afterwards."""

    def __init__(self, adapters: Mapping[str, ProviderAdapter], settings: Mapping[str, ProviderSettings]) -> None:
        self._adapters = MappingProxyType(dict(adapters))
        self._settings = MappingProxyType(dict(settings))

    @classmethod
    def from_config(cls, config: AppConfig) -> ProviderRegistry:
        adapters: dict[str, ProviderAdapter] = {}
        for name, settings in config.providers.items():
            adapter_name = settings.adapter or name
            try:
                factory = ADAPTER_FACTORIES[adapter_name]
            except KeyError as exc:
                available = ", ".join(sorted(ADAPTER_FACTORIES))
                raise ValueError(
                    f"Provider '{name}' uses unknown adapter '{adapter_name}'. Available: {available}"
                ) from exc
            adapters[name] = factory(name, settings)
            logger.debug("Configured provider '%s' (%s adapter)", name, adapter_name)
        return cls(adapters, config.providers)

    def names(self) -> list[str]:
        return sorted(self._adapters)

    def list_infos(self) -> list[ProviderInfo]:
        return [self._adapters[name].info() for name in self.names()]

    def get(self, name: str) -> ProviderAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            available = ", ".join(self.names())
            raise InvalidRequest(f"Unknown provider '{name}'. Available: {available}") from None

    def resolve_model(self, name: str, model: str | None) -> str:
        """Apply the provider's default model and reject names it does not serve."""
        self.get(name)
        settings = self._settings[name]
        if model is None or not model.strip():
            return settings.default_model
        candidate = model.strip()
        if not _MODEL_NAME_PATTERN.match(candidate):
            raise InvalidRequest(f"Invalid model name '{model}'.")
        if settings.allowed_models and candidate not in settings.allowed_models:
            allowed = ", ".join(settings.allowed_models)
            raise InvalidRequest(
                f"Model '{candidate}' is not available for provider '{name}'. Allowed: {allowed}"
            )
        return candidate

    def close(self) -> None:
        for adapter in self._adapters.values():
            close = getattr(adapter, "close", None)
            if callable(close):
                close()
