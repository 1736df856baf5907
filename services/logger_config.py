# services/logger_config.py
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

from config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# Chatty third-party loggers kept at WARNING
NOISY_LOGGERS = ("sentence_transformers", "urllib3", "httpx", "aiosqlite", "sqlalchemy.engine")


def _file_handler(path: str, formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Rotating file handler (5MB x 5), or None when the log file cannot be opened."""
    try:
        log_dir = os.path.dirname(path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
    except OSError as e:
        print(f"Error setting up file logger: {e}")
        return None
    handler.setFormatter(formatter)
    return handler


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger: rotating file plus console.

    Safe to call more than once; existing handlers are replaced.
    """
    logger = logging.getLogger(settings.LOGGER_NAME)
    if logger.hasHandlers():
        logger.handlers.clear()

    resolved = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = _file_handler(settings.LOG_FILE_PATH, formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured (level {logging.getLevelName(logger.level)}).")
    return logger
