"""Tests for the CLI entry point."""

from __future__ import annotations

import json

import pytest

from eyeris.__main__ import main as cli_main
from eyeris.config import AppConfig


class DummyStore:
    def load(self) -> AppConfig:
        return AppConfig()


def test_cli_lists_providers(monkeypatch, capsys):
    monkeypatch.setattr("eyeris.__main__.SettingsStore", DummyStore)

    assert cli_main(["--list-providers"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert [item["name"] for item in payload] == ["ollama", "openai"]
    assert payload[0]["default_model"] == "moondream"


def test_cli_lists_models(monkeypatch, capsys):
    monkeypatch.setattr("eyeris.__main__.SettingsStore", DummyStore)
    monkeypatch.setattr(
        "eyeris.__main__.OllamaAdapter.discover_models",
        lambda self: ["llava:13b"],
    )

    cli_main(["--list-models"])

    assert json.loads(capsys.readouterr().out) == {"ollama": ["llava:13b"]}


def test_cli_requires_input(monkeypatch):
    monkeypatch.setattr("eyeris.__main__.SettingsStore", DummyStore)
    with pytest.raises(SystemExit):
        cli_main([])


def test_cli_runs_analysis(monkeypatch, tmp_path, capsys):
    image_path = tmp_path / "image.png"
    image_path.write_bytes(b"fake")
    config_path = tmp_path / "config.yaml"
    AppConfig(default_provider="openai").save(config_path)
    captured = {}

    class DummyService:
        def __init__(self, config: AppConfig) -> None:
            captured["config"] = config

        @classmethod
        def from_config(cls, config: AppConfig) -> "DummyService":
            return cls(config)

        def analyze(self, image_bytes, format, provider, model):
            captured.update(image=image_bytes, format=format, provider=provider, model=model)
            return 200, {"success": True, "message": "ok", "data": {"analysis": "A cat"}}

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            captured["closed"] = True

    monkeypatch.setattr("eyeris.__main__.AnalysisService", DummyService)

    code = cli_main(
        ["--input", str(image_path), "--format", "concise", "--config", str(config_path)]
    )

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["data"]["analysis"] == "A cat"
    assert captured["image"] == b"fake"
    assert captured["format"] == "concise"
    assert captured["provider"] is None
    assert captured["config"].default_provider == "openai"
    assert captured["closed"] is True


def test_cli_reports_failure_exit_code(monkeypatch, tmp_path, capsys):
    image_path = tmp_path / "image.png"
    image_path.write_bytes(b"fake")
    monkeypatch.setattr("eyeris.__main__.SettingsStore", DummyStore)

    class FailingService:
        @classmethod
        def from_config(cls, config):
            return cls()

        def analyze(self, *args, **kwargs):
            return 400, {"success": False, "message": "bad"}

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return None

    monkeypatch.setattr("eyeris.__main__.AnalysisService", FailingService)

    assert cli_main(["--input", str(image_path)]) == 1
    assert json.loads(capsys.readouterr().out)["success"] is False
