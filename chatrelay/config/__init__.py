"""Configuration module for chatrelay."""

from chatrelay.config.loader import load_config, get_config_path
from chatrelay.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
