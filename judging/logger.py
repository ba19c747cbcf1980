"""Logging setup (loguru)."""

import sys

from loguru import logger

from judging.config import Settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(settings: Settings) -> None:
    """Replace loguru's default handler with the configured sinks."""
    logger.remove()

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=settings.log_level.upper(),
        colorize=True,
    )

    if settings.log_file:
        logger.add(
            settings.log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
            encoding="utf-8",
        )

    logger.debug("Logging configured (level={})", settings.log_level.upper())
