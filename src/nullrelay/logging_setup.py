from __future__ import annotations

import logging
import sys
from typing import TextIO

from nullrelay.config import LOG_LEVELS
from nullrelay.exceptions import ConfigError

LOGGER_NAME = "nullrelay"
TRACE = 5
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LEVELS: dict[str, int] = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

logging.addLevelName(TRACE, "TRACE")


def level_for(name: str) -> int:
    key = name.strip().lower()
    if key not in LOG_LEVELS:
        raise ConfigError(f"unknown log level {name!r}")
    return _LEVELS[key]


def configure_logging(
    level: str = "warn",
    *,
    debug: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Install a single stderr handler on the package logger.

    ``debug`` forces the debug level regardless of ``level``. Calling this
    again replaces the handler rather than stacking a second one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_nullrelay_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._nullrelay_handler = True
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else level_for(level))
    logger.propagate = False
    return logger
