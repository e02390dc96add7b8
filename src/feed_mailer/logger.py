"""
Process logging for feed mailer.

All output goes through loguru. Libraries that log with the standard
``logging`` module (httpx, SQLAlchemy) are bridged into the same sinks so a
single level and format apply to the whole process.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

from feed_mailer.config import get_config

# Standard library loggers forwarded to loguru
BRIDGED_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class _StdlibBridge(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the caller of the logging call, not this handler
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _bridge_stdlib(level: str) -> None:
    bridge = _StdlibBridge()
    for name in BRIDGED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [bridge]
        std_logger.propagate = False
        # Library chatter only at DEBUG
        std_logger.setLevel(logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING)


def setup_logger(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    rotation: Optional[str] = None,
    retention: Optional[str] = None,
    format: Optional[str] = None,
    verbose: bool = False,
) -> None:
    """(Re)configure the process sinks.

    Explicit arguments override the ``logging`` section of the configuration.
    Passing ``log_file`` enables the file sink even when the configuration
    leaves it off.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ...)
        log_file: Path of the rotating log file
        rotation: When to rotate the file (e.g. "100 MB", "1 day")
        retention: How long rotated files are kept (e.g. "30 days")
        format: loguru format string
        verbose: Force DEBUG and enable variable values in tracebacks
    """
    settings = get_config().logging

    level = "DEBUG" if verbose else (level or settings.level).upper()
    format = format or settings.format
    to_file = settings.file_enabled or log_file is not None

    _logger.remove()

    if settings.console_enabled:
        _logger.add(
            sys.stderr,
            level=level,
            format=format,
            colorize=True,
            backtrace=True,
            diagnose=verbose,
        )

    if to_file:
        path = Path(log_file or settings.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(path),
            level=level,
            format=format,
            rotation=rotation or settings.rotation,
            retention=retention or settings.retention,
            compression="zip",
            encoding="utf-8",
            enqueue=True,  # Job runs log from worker threads
            backtrace=True,
            diagnose=verbose,
        )

    _bridge_stdlib(level)


def get_logger(name: Optional[str] = None):
    """Get a logger, bound to ``name`` when given (usually ``__name__``)."""
    if name:
        return _logger.bind(name=name)
    return _logger


logger = _logger

__all__ = [
    "setup_logger",
    "get_logger",
    "logger",
]
