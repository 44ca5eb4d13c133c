"""Centralized logging configuration for the image toolkit."""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER_NAME = "image-toolkit"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "structured":
        # Structured logging format with more context
        return logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)-8s | "
            "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Setup centralized logging with environment variable configuration.

    Args:
        name: Logger name (defaults to "image-toolkit")
        level: Log level override (defaults to env var or INFO)
        format_type: Logging format ("structured" or "simple")
        log_dir: Directory for the rotating ``app.log`` and ``error.log``
            files. No file handlers are attached when omitted.

    Returns:
        Configured logger instance

    Environment Variables:
        LOG_LEVEL: Set logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_FORMAT: Set format type ("structured" or "simple")
    """
    logger = logging.getLogger(name)

    # Determine log level from parameter, env var, or default
    if level:
        log_level = getattr(logging, level.upper(), logging.INFO)
    else:
        env_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_level = getattr(logging, env_level, logging.INFO)

    logger.setLevel(log_level)

    env_format = os.getenv("LOG_FORMAT", format_type).lower()
    formatter = _build_formatter(env_format)

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_dir is not None:
        attach_file_handlers(logger, Path(log_dir), formatter)

    # Prevent duplicate log messages
    logger.propagate = False
    return logger


def attach_file_handlers(
    logger: logging.Logger, log_dir: Path, formatter: logging.Formatter
) -> None:
    """Attach rotating ``app.log`` and ``error.log`` handlers once per file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    existing = {
        getattr(handler, "baseFilename", None)
        for handler in logger.handlers
        if isinstance(handler, RotatingFileHandler)
    }

    for filename, level in (("app.log", logging.NOTSET), ("error.log", logging.ERROR)):
        path = str((log_dir / filename).resolve())
        if path in existing:
            continue
        handler = RotatingFileHandler(
            path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger instance with consistent configuration.

    Child names (``image-toolkit.orchestrator``) propagate to the configured
    root toolkit logger instead of receiving handlers of their own.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    if name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return setup_logger(name)


# Create default logger instance
logger = setup_logger()
