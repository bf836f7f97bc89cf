"""Core daemon components."""

from timekeeper.core.config import Config, ConfigError, get_config

__all__ = ["Config", "ConfigError", "get_config"]
