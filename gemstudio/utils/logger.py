import logging
import sys
from typing import Optional

from gemstudio.config.settings import settings

LOGGER_NAME = "GemStudio"


def setup_logging(level: Optional[str] = None, logger_name: str = LOGGER_NAME) -> logging.Logger:
    """
    Configures and returns the studio logger; `level` defaults to GEMSTUDIO_LOG_LEVEL.
    Idempotent: will not add duplicate handlers. Component loggers from
    get_logger() inherit the handler and show their component in each line.
    """
    logger = logging.getLogger(logger_name)

    numeric_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    logger.setLevel(numeric_level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False  # Avoid duplicates from root logger

    return logger


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """The studio logger, or its `GemStudio.<component>` child."""
    if not component:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{component}")
