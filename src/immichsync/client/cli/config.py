"""Configuration utilities for the immichsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from immichsync.client.state import StateStore
from immichsync.core.config import SyncSettings

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "IMMICHSYNC_HOME"


def get_config_dir() -> Path:
    """Get the configuration directory for immichsync.

    Returns:
        ``$IMMICHSYNC_HOME`` if set, else ``~/.immichsync``.
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".immichsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_dir() -> Path:
    """Get the directory holding the persistent indexes and history."""
    return get_config_dir() / "state"


def get_log_file() -> Path:
    """Get the path of the log file."""
    return get_config_dir() / "immichsync.log"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        try:
            return dict(json.loads(config_file.read_text()))
        except ValueError as e:
            logger.warning(f"Ignoring unreadable config file {config_file}: {e}")
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_settings() -> SyncSettings:
    """Load settings, persisting a newly generated device ID."""
    config = load_config()
    settings = SyncSettings.from_dict(config)
    if config.get("device_id") != settings.device_id:
        save_settings(settings)
    return settings


def save_settings(settings: SyncSettings) -> None:
    """Persist settings to the config file."""
    save_config(settings.to_dict())


def open_state() -> StateStore:
    """Open the persistent stores."""
    return StateStore(get_state_dir())


def coerce_setting(key: str, value: str) -> Any:
    """Convert a command-line string to the type of a settings field.

    Raises:
        KeyError: If ``key`` is not a settings field.
        ValueError: If ``value`` cannot be converted.
    """
    defaults = SyncSettings().to_dict()
    if key not in defaults:
        raise KeyError(key)
    current = defaults[key]
    if isinstance(current, bool):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Expected a boolean, got {value!r}")
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value
