"""
simplesocks core module

Configuration and logging.
"""

from .config import (
    Settings,
    ServerSettings,
    LogSettings,
    get_settings,
)
from .logging import setup_logging, get_logger

__all__ = [
    # Settings
    "Settings",
    "ServerSettings",
    "LogSettings",
    "get_settings",
    # Logging
    "setup_logging",
    "get_logger",
]
