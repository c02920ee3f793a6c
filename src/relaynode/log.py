from __future__ import annotations

import sys

from loguru import logger


def configure_logging(level: str = "INFO") -> int:
    """Replace loguru's default sink with a stderr sink at ``level``."""
    logger.remove()
    return logger.add(sys.stderr, level=str(level).upper())
