"""Locate, read and write the per-user eyeris settings file."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import AppConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EYERIS_CONFIG"
SETTINGS_FILE = Path("eyeris") / "settings.yaml"


def default_settings_path() -> Path:
    """``$EYERIS_CONFIG`` when set, else ``eyeris/settings.yaml`` under the config root."""
    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return _config_root() / SETTINGS_FILE


def _config_root() -> Path:
    # Empty variables count as unset.
    if os.name == "nt":
        root = os.getenv("APPDATA") or Path.home() / "AppData" / "Roaming"
    else:
        root = os.getenv("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(root).expanduser()


class SettingsStore:
    """Settings file backing the CLI; a missing file yields the built-in defaults."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else default_settings_path()

    def load(self) -> AppConfig:
        if not self.path.is_file():
            logger.debug("No settings file at %s; using defaults", self.path)
            return AppConfig()
        logger.debug("Loading settings from %s", self.path)
        return AppConfig.load(self.path)

    def save(self, config: AppConfig) -> None:
        config.save(self.path)
        logger.info("Saved settings to %s", self.path)
