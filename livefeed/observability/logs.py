"""
Logging setup for the feed service.
Console logging plus optional daily-rotated file logging.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging; add a rotating file handler when log_file is set."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)

    if log_file:
        setup_log_rotation(log_file)


def setup_log_rotation(log_file: str) -> None:
    """Setup log rotation for service logs."""
    try:
        # Ensure log directory exists
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        root_logger = logging.getLogger()
        target = os.path.abspath(log_file)
        for existing in root_logger.handlers:
            if isinstance(existing, TimedRotatingFileHandler) and existing.baseFilename == target:
                return

        handler = TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

        logger.info("Log rotation configured (daily, keep 7 days)")

    except OSError as e:
        logger.error(f"Failed to setup log rotation: {e}")
