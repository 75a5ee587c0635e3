"""Logging setup and the log sink used by the adapter registry."""

import logging
from typing import Optional, Protocol

from livechat.core.config import get_settings


LOG_DEBUG = "debug"
LOG_INFO = "info"
LOG_WARNING = "warning"
LOG_ERROR = "error"

_LEVELS = {
    LOG_DEBUG: logging.DEBUG,
    LOG_INFO: logging.INFO,
    LOG_WARNING: logging.WARNING,
    LOG_ERROR: logging.ERROR,
}


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the ``livechat`` logger hierarchy.

    Args:
        level: Log level name, defaults to ``Settings.log_level``
        fmt: logging format string, defaults to ``Settings.log_format``
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt or settings.log_format))

    root = logging.getLogger("livechat")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False


class LogSink(Protocol):
    """Anything that accepts ``log(message, level)``."""

    def log(self, message: str, level: str = LOG_INFO) -> None:
        ...


class LoggingSink:
    """Log sink writing to a standard library logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("livechat")

    def log(self, message: str, level: str = LOG_INFO) -> None:
        self.logger.log(_LEVELS.get(level, logging.INFO), message)
