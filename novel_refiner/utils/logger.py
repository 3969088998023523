import sys
from loguru import logger
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

_configured_level: Optional[str] = None

def setup_logger(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Configure loguru sinks for the CLI; repeated calls only reconfigure on change."""
    global _configured_level

    if _configured_level == log_level and log_file is None:
        return logger

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
        )

    _configured_level = log_level
    return logger
