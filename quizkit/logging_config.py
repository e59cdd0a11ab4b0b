"""
Loguru sinks for quizkit.

Library modules only call logger.*; the CLI decides where output goes.
"""
from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Replace the default sink with a compact stderr sink and an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
        )
