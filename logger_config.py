# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Logger Configuration
============================================
Logging with production/dev modes and automatic log rotation.

- Production mode: console shows errors only, file keeps WARNING+
- Dev mode: console shows INFO+, file keeps everything
- Scheduler and HTTP libraries are kept at WARNING so the minute cycle
  does not flood the log

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import logging
import logging.handlers
import sys
from pathlib import Path

from config import (
    ENV,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILE,
    LOG_FORMAT_DETAILED,
    LOG_FORMAT_SIMPLE,
    LOG_MAX_BYTES,
)

LOGGER_NAME = 'MubarakWayBot'

# Third-party loggers and the lowest level they may emit
QUIET_LOGGERS = {
    'apscheduler': logging.WARNING,  # logs every job run at INFO
    'urllib3': logging.WARNING,
    'TeleBot': logging.INFO,
}


class ConsoleFilter(logging.Filter):
    """
    Keep the terminal readable.
    DEBUG never reaches the console; in production only ERROR and above do.
    """
    def __init__(self, production_mode=False):
        super().__init__()
        self.threshold = logging.ERROR if production_mode else logging.INFO

    def filter(self, record):
        return record.levelno >= self.threshold


def _file_handler(production_mode: bool) -> logging.Handler:
    Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=LOG_FILE,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(logging.WARNING if production_mode else logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT_DETAILED, datefmt=LOG_DATE_FORMAT))
    return handler


def _console_handler(production_mode: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ConsoleFilter(production_mode=production_mode))
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT_SIMPLE, datefmt='%H:%M:%S'))
    return handler


def setup_logging() -> logging.Logger:
    """
    Configure the root logger once and return the application logger.

    Returns:
        logging.Logger: The 'MubarakWayBot' logger every module imports
    """
    production_mode = ENV.lower() == 'production'

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    if root_logger.handlers:
        root_logger.handlers.clear()  # Re-running setup must not duplicate output

    root_logger.addHandler(_file_handler(production_mode))
    root_logger.addHandler(_console_handler(production_mode))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(logging.DEBUG)

    app_logger.info("=" * 60)
    app_logger.info(f"🚀 Logging initialized ({'PRODUCTION' if production_mode else 'DEVELOPMENT'} mode)")
    app_logger.info(f"📂 Log file: {LOG_FILE} "
                    f"(rotates at {LOG_MAX_BYTES / 1024 / 1024:.1f}MB, {LOG_BACKUP_COUNT} backups)")
    app_logger.info("=" * 60)

    return app_logger


# Initialize logger on import
logger = setup_logging()
