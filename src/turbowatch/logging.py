"""Logging for turbowatch.

Everything logs under the "turbowatch" logger. ``setup_logging()`` attaches
at most one handler to it:
- a file handler when ``logging.file`` or TW_LOG names a path
- otherwise a stderr handler, but only when stderr is a console

Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from turbowatch.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("turbowatch")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_initialized = False


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # Format a copy; other handlers share the record
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Numeric level for a LoggingConfig.

    ``verbose`` wins over ``level`` and is clamped to 0-4. Unknown level
    names mean INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY[min(max(config.verbose, 0), len(_VERBOSITY) - 1)]
    if config.level:
        name = config.level.upper()
        level = logging.getLevelName("WARNING" if name == "WARN" else name)
        return level if isinstance(level, int) else logging.INFO
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> logging.Handler | None:
    """Configure the turbowatch logger once; later calls do nothing.

    Returns:
        The handler that was attached, if any.
    """
    global _initialized
    if _initialized:
        return None
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)

    handler = _make_handler(config.file if config and config.file else os.environ.get("TW_LOG"))
    if handler is None:
        return None
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return handler


def _make_handler(log_path: str | None) -> logging.Handler | None:
    if log_path:
        try:
            return logging.FileHandler(os.path.expanduser(log_path), encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[turbowatch] Failed to open log file: {e}", file=sys.stderr)
    # Piped stderr belongs to whatever launched us
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def get_logger(name: str | None = None) -> logging.Logger:
    """The turbowatch logger, or its child ``turbowatch.<name>``."""
    return logger.getChild(name) if name else logger
