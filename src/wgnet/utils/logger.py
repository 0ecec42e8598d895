"""
Logging setup for wgnet.

All modules obtain their logger through ``get_logger(__name__)`` so that
records carry the originating module name. ``configure_logging`` is called
once by the CLI before any network operation runs.
"""

import sys

from loguru import logger as _logger

from wgnet.models.enums import LogLevel

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVELS = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_logger.configure(extra={"name": "wgnet"})


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return _logger.bind(name=name)


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Install the wgnet log sinks.

    Args:
        level: Verbosity level.
        log_file: Optional file path; empty means stderr only.
    """
    loguru_level = _LEVELS[LogLevel(level)]

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=_FORMAT,
        backtrace=level == LogLevel.FULL,
        diagnose=level == LogLevel.FULL,
    )
    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=_FORMAT,
            rotation="10 MB",
            retention=3,
        )
