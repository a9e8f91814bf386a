"""
Logging configuration for processes embedding the question engine.

Library modules only call `logger.*`; entry points call configure_logging()
once at startup.
"""
from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from config import get_settings

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with a stderr sink and an optional file sink.

    Args:
        level: Minimum level (defaults to settings.log_level)
        log_file: Log file path (defaults to settings.log_file; empty disables it)
    """
    settings = get_settings()
    level = level or settings.log_level
    log_file = log_file if log_file is not None else settings.log_file

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="14 days",
            encoding="utf-8",
        )

    logger.debug(f"Logging configured (level={level}, file={log_file or 'none'})")
