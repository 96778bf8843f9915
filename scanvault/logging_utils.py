"""
Logging utilities with rotating file handler.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from .config import Config, log_file_path

LOGGER_NAME = "scanvault"


def setup_logger(
    config: Optional[Config] = None,
    *,
    log_file: Path | str | None = None,
) -> logging.Logger:
    """Set up the package logger with a rotating file handler.

    Args:
        config: Configuration object, uses defaults if None
        log_file: Override for the log file location

    Returns:
        Configured ``scanvault`` logger; module loggers propagate to it

    Raises:
        OSError: If log file cannot be created
    """
    if config is None:
        config = Config()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.log_level, logging.WARNING))

    # Avoid duplicate handlers if logger already configured
    if any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
        return logger

    log_path = Path(log_file) if log_file is not None else log_file_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


def reset_logger() -> None:
    """Detach and close every handler installed by :func:`setup_logger`."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def log_error(message: str, exception: Optional[BaseException] = None) -> None:
    """Log an error message with optional exception details.

    Args:
        message: Error message to log
        exception: Optional exception to include in log
    """
    logger = logging.getLogger(LOGGER_NAME)

    if exception is not None:
        logger.error(
            "%s: %s",
            message,
            exception,
            exc_info=(type(exception), exception, exception.__traceback__),
        )
    else:
        logger.error(message)
