"""Logging configuration."""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str, level: Optional[str] = None, log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Setup logger with consistent formatting.

    Handlers are attached only once per logger, so calling this at import time
    of every module is safe.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives a copy of every record

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        # Run loggers are configured per module; avoid double printing via root
        logger.propagate = False

    if log_file and not any(
        isinstance(h, logging.FileHandler) for h in logger.handlers
    ):
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if level:
        logger.setLevel(getattr(logging, level.upper()))
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)

    return logger


def set_global_level(level: str) -> None:
    """Apply a level to every logger created by setup_logger under webpilot."""
    resolved = getattr(logging, level.upper())
    for name, existing in logging.Logger.manager.loggerDict.items():
        if name.startswith("webpilot") and isinstance(existing, logging.Logger):
            existing.setLevel(resolved)
