"""Named loggers for the service.

Every module asks for its logger through `get_logger` so that all output
shares one console format and level, configured from `LOG_LEVEL`.
"""
from __future__ import annotations

import logging
from typing import Dict

from scorehub.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LOGGERS: Dict[str, logging.Logger] = {}


def get_logger(name: str) -> logging.Logger:
    """Create or retrieve a named logger (e.g. scorehub.gateway)."""
    if name in _LOGGERS:
        return _LOGGERS[name]

    logger = logging.getLogger(name)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(console)
    logger.propagate = False

    level = get_settings().log_level.upper()
    try:
        logger.setLevel(level)
    except ValueError:
        logger.setLevel(logging.INFO)
        logger.warning(f"Unknown LOG_LEVEL {level!r}; using INFO")

    _LOGGERS[name] = logger
    return logger
