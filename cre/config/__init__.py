"""Configuration and logging setup."""

from cre.config.config import Settings, get_settings
from cre.config.logging_config import configure_logging, get_logger

__all__ = ["Settings", "get_settings", "configure_logging", "get_logger"]
