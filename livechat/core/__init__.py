"""Core components shared across the package: settings and logging."""

from .config import Settings, get_settings
from .logging import LoggingSink, LogSink, configure_logging

__all__ = [
    "Settings",
    "get_settings",
    "LogSink",
    "LoggingSink",
    "configure_logging",
]
