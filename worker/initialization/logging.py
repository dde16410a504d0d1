"""
Worker Initialization - Logging Module.

Module: logging.py
Configures loguru logger for the worker.
Sets up log rotation and retention policies.
"""

import sys

from loguru import logger

from app.config.settings import settings


def setup_logging(log_file: str | None = "logs/indexer.log") -> None:
    """
    Configure stderr and rotating file sinks.

    Args:
        log_file: Path of the rotating log file, None to disable it
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
            encoding="utf-8",
        )

    logger.info(f"Starting token indexer worker ({settings.environment})...")
