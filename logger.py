"""
Logging configuration
"""
import sys

from loguru import logger

from config import get_settings

settings = get_settings()


def setup_logger():
    """Configure logger with appropriate settings"""
    logger.remove()  # Remove default handler

    logger.add(
        sys.stdout,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=settings.log_level,
    )

    return logger


# Initialize logger
log = setup_logger()
