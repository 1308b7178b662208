"""
Loggers for the curve_sculptor modules.

Each module binds ``log = get_logger(__name__)``.  Recovered failures (parse
errors, singular solves, rejected refits) are reported here instead of being
raised.  The level is read from CURVE_SCULPTOR_LOG_LEVEL; handlers and
formatting are left to the embedding application.
"""

from __future__ import annotations

import logging
import os
from typing import Final

LEVEL_ENV: Final[str] = "CURVE_SCULPTOR_LOG_LEVEL"


def level_from_env(default: int = logging.INFO) -> int:
    """Numeric level named by LEVEL_ENV; unknown or unset names give *default*."""
    name = os.getenv(LEVEL_ENV, "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level_from_env())
    return logger
