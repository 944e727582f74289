"""Configuration module for focusflow."""

from focusflow.config.loader import get_config_path, load_config, save_config
from focusflow.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
