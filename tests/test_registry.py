"""Tests for the provider registry."""

from __future__ import annotations

import pytest

from eyeris.config import AppConfig
from eyeris.errors import InvalidRequest
from eyeris.providers.ollama import OllamaAdapter
from eyeris.providers.openai import OpenAIAdapter
from eyeris.providers.registry import ADAPTER_FACTORIES, ProviderRegistry


def test_from_config_builds_every_provider():
    registry = ProviderRegistry.from_config(AppConfig())

    assert registry.names() == ["ollama", "openai"]
    assert isinstance(registry.get("ollama"), OllamaAdapter)
    assert isinstance(registry.get("openai"), OpenAIAdapter)
    assert [info.name for info in registry.list_infos()] == ["ollama", "openai"]


def test_named_provider_can_reuse_an_adapter():
    config = AppConfig(
        providers={
            "gpu-box": {
                "adapter": "ollama",
                "base_url": "http://gpu-box:11434",
                "default_model": "llava",
            }
        }
    )
    registry = ProviderRegistry.from_config(config)

    adapter = registry.get("gpu-box")
    assert isinstance(adapter, OllamaAdapter)
    assert adapter.info().base_url == "http://gpu-box:11434"


def test_unknown_adapter_is_a_configuration_error():
    config = AppConfig(
        providers={"weird": {"base_url": "http://weird", "default_model": "m"}}
    )
    with pytest.raises(ValueError):
        ProviderRegistry.from_config(config)


def test_unknown_provider_is_invalid_request():
    registry = ProviderRegistry.from_config(AppConfig())
    with pytest.raises(InvalidRequest):
        registry.get("anthropic")
    with pytest.raises(InvalidRequest):
        registry.resolve_model("anthropic", None)


def test_resolve_model_applies_defaults_and_allow_list():
    config = AppConfig(providers={"ollama": {"allowed_models": ["moondream", "llava:13b"]}})
    registry = ProviderRegistry.from_config(config)

    assert registry.resolve_model("ollama", None) == "moondream"
    assert registry.resolve_model("ollama", "  ") == "moondream"
    assert registry.resolve_model("ollama", "llava:13b") == "llava:13b"
    with pytest.raises(InvalidRequest):
        registry.resolve_model("ollama", "bakllava")


def test_resolve_model_rejects_malformed_names():
    registry = ProviderRegistry.from_config(AppConfig())
    with pytest.raises(InvalidRequest):
        registry.resolve_model("openai", "bad model!")
    assert registry.resolve_model("openai", "gpt-4o") == "gpt-4o"


def test_adapter_table_is_read_only():
    with pytest.raises(TypeError):
        ADAPTER_FACTORIES["other"] = OllamaAdapter
