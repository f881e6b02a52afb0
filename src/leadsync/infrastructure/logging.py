"""Loguru sink configuration shared by the API and the worker."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from leadsync.infrastructure.settings import Settings, get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(settings: Settings | None = None) -> None:
    """Replace the default sink with the console sink, plus rotating files in production."""
    settings = settings or get_settings()
    level = "DEBUG" if settings.debug else settings.log_level.upper()

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level)

    if settings.is_production:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "error.log",
            level="ERROR",
            rotation="5 MB",
            retention=5,
            serialize=True,
            enqueue=True,
        )
        logger.add(
            log_dir / "combined.log",
            level=level,
            rotation="5 MB",
            retention=5,
            serialize=True,
            enqueue=True,
        )
        logger.info(f"File logging enabled in {log_dir}")
