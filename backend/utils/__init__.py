"""
WatchX Utilities Package.

Configuration and logging shared across all modules.
Requires Python 3.11+.
"""

from utils.config import (
    ConfigError,
    ReclaimPolicy,
    ResetPolicy,
    Settings,
    WatchConfig,
    get_settings,
    load_watch_config,
    parse_port,
)
from utils.logger import configure_logging, get_logger, LoggerMixin

__all__ = [
    "ConfigError",
    "ReclaimPolicy",
    "ResetPolicy",
    "Settings",
    "WatchConfig",
    "get_settings",
    "load_watch_config",
    "parse_port",
    "configure_logging",
    "get_logger",
    "LoggerMixin",
]
