"""Logging setup for jailfs.

Library modules log through ``logging.getLogger("jailfs.<module>")`` and
never install handlers themselves. Applications (and the CLI) call
``configure_logger`` once; repeated calls reuse the existing handler.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from jailfs.config import LogLevel

LOGGER_NAME = "jailfs"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logger(
    log_level: LogLevel | str = LogLevel.INFO,
    *,
    log_path: Path | str | None = None,
) -> logging.Logger:
    """Configure and return the package logger.

    Logs go to ``log_path`` when given, otherwise to stderr. Subsequent calls
    only adjust the level.
    """

    logger = logging.getLogger(LOGGER_NAME)

    level_value = _to_logging_level(log_level)
    logger.setLevel(level_value)
    logger.propagate = False

    if not logger.handlers:
        handler: logging.Handler
        if log_path is not None:
            path = Path(log_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8")
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(level_value)

    return logger


def _to_logging_level(value: LogLevel | str) -> int:
    mapping = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
    }
    if isinstance(value, LogLevel):
        return mapping[value]
    if isinstance(value, str):
        try:
            return mapping[LogLevel(value)]
        except ValueError:
            return logging.WARNING
    return logging.WARNING


__all__ = ["configure_logger", "LOGGER_NAME", "_to_logging_level"]
