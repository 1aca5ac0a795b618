"""Command line entry point for the eyeris analysis service."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from . import AnalysisService, AppConfig, SettingsStore
from .providers.ollama import OllamaAdapter
from .providers.registry import ProviderRegistry


def _load_config(path: Path | None) -> AppConfig:
    if path is not None:
        return AppConfig.load(path)
    return SettingsStore().load()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="eyeris image analysis")
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        help="Image file to analyze.",
    )
    parser.add_argument(
        "--format",
        "-f",
        default="json",
        help="Output format: json, concise, detailed, list, discovery, "
        "category:<name>, platform:<name> or custom:<trait>,<trait>.",
    )
    parser.add_argument(
        "--provider",
        help="Override the configured default provider.",
    )
    parser.add_argument(
        "--model",
        help="Override the provider's default model.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a YAML or JSON configuration file.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--list-providers",
        action="store_true",
        help="Print configured providers and exit.",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="Print vision models installed on Ollama providers and exit.",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = _load_config(args.config)

    if args.list_providers:
        registry = ProviderRegistry.from_config(config)
        payload = [asdict(info) for info in registry.list_infos()]
        for item in payload:
            item["tags"] = list(item["tags"])
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    if args.list_models:
        registry = ProviderRegistry.from_config(config)
        models: dict[str, list[str]] = {}
        for name in registry.names():
            adapter = registry.get(name)
            if isinstance(adapter, OllamaAdapter):
                models[name] = adapter.discover_models()
        json.dump(models, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    if args.input is None:
        parser.error("--input is required unless listing providers or models.")

    try:
        image_bytes = args.input.expanduser().read_bytes()
    except OSError as exc:
        parser.error(f"Cannot read {args.input}: {exc}")

    with AnalysisService.from_config(config) as service:
        _, payload = service.analyze(
            image_bytes,
            format=args.format,
            provider=args.provider,
            model=args.model,
        )

    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if payload["success"] else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
