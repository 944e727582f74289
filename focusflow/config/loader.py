"""Configuration loading utilities."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from focusflow.config.schema import Config
from focusflow.logging import get_logger
from focusflow.utils.helpers import atomic_write_text

logger = get_logger(__name__)


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".focusflow" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object. A missing or invalid file yields defaults.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Config.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("config_invalid_using_defaults", path=str(path), error=str(e))

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file using camelCase keys."""
    path = config_path or get_config_path()
    data = config.model_dump(by_alias=True)
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
