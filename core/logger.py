"""
Structured logging configuration for batch payments.
Ensures secret redaction and proper log levels.
"""
import logging
import os
import sys
from typing import Optional


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Configure and return a logger instance.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env LOG_LEVEL or INFO.

    Returns:
        Configured logger instance
    """
    log_level = level or os.getenv("LOG_LEVEL", "INFO")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    Redact an API key or wallet id for logging.

    Args:
        value: Secret value
        visible: Number of trailing characters kept

    Returns:
        Masked string such as "****a1b2"
    """
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * 4 + value[-visible:]
