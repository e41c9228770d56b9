"""loguru sink configuration shared by the CLI and library callers."""

from __future__ import annotations

import sys

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "WARNING") -> int:
    """Replace loguru's default sink with a single stderr sink at *level*.

    Returns the handler id so callers (tests) can remove it again.
    """
    logger.remove()
    logger.enable("contextkb")
    return logger.add(sys.stderr, level=level.upper(), format=_FORMAT)
