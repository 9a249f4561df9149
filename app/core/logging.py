"""
Logging configuration for the application.

This module sets up logging with different levels for different environments.
It uses loguru for more advanced logging capabilities.
"""

import sys

from loguru import logger

from .config import settings, Environment


def setup_logging() -> None:
    """Set up logging configuration based on the environment."""

    # Remove default logger
    logger.remove()

    log_format = settings.logging.format

    # Configure logger based on environment
    if settings.environment == Environment.PRODUCTION:
        # Production logging - structured, one JSON document per line
        logger.add(
            sys.stdout,
            format=log_format,
            level=settings.logging.level,
            colorize=False,
            serialize=True,
        )
    else:
        # Development/Testing logging - more verbose, colored
        logger.add(
            sys.stdout,
            format=log_format,
            level=settings.logging.level,
            colorize=True,
            backtrace=True,
            diagnose=True,
        )

    if settings.logging.file_enabled:
        logger.add(
            settings.logging.file_path,
            format=log_format,
            level=settings.logging.level,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )

    logger.info(f"Logging initialized for environment: {settings.environment.value}")


# Initialize logging
setup_logging()
