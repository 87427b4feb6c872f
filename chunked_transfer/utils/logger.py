"""
Logging configuration with rotating file handler.

This module provides a centralized logging configuration for the service and
the upload client. The log directory comes from ``TRANSFER_LOG_DIR``; set
``TRANSFER_LOG_TO_FILE=false`` to keep output on the console only.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGS_DIR = Path(os.getenv("TRANSFER_LOG_DIR", "logs"))
LOG_TO_FILE = os.getenv("TRANSFER_LOG_TO_FILE", "true").lower() not in ("0", "false", "no")
LOG_LEVEL = getattr(logging, os.getenv("TRANSFER_LOG_LEVEL", "INFO").upper(), logging.INFO)

# Define log format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name: str, level: int = LOG_LEVEL) -> logging.Logger:
    """
    Set up a logger with both file and console handlers.

    Args:
        name: Logger name (usually __name__)
        level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    # Console handler (stdout)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if not LOG_TO_FILE:
        return logger

    LOGS_DIR.mkdir(parents=True, exist_ok=True)

    # File handler with rotation (10MB per file, keep 10 backup files)
    file_handler = RotatingFileHandler(
        LOGS_DIR / "app.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    # Error file handler (only errors and above)
    error_handler = RotatingFileHandler(
        LOGS_DIR / "error.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8"
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(error_handler)

    return logger


# Create default application logger
app_logger = setup_logger("chunked_transfer_service")


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (if None, returns default app logger)

    Returns:
        Logger instance
    """
    if name is None:
        return app_logger
    return setup_logger(name)
