# ========================
# src/taxiflow/utils/logging_setup.py
# ========================

"""
Logging Configuration

Root logger setup shared by pipeline runs, the command line and the API.
Modules log through ``logging.getLogger(__name__)``; only entry points call
``setup_logging``.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Pipeline logs can be verbose at DEBUG on large files
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

QUIET_LOGGERS = ('uvicorn.access', 'httpx', 'multipart')


def setup_logging(log_level: str = "INFO",
                  log_file: Optional[str] = None,
                  log_dir: str = "logs",
                  quiet: Iterable[str] = QUIET_LOGGERS) -> logging.Logger:
    """
    Configure the root logger with a console handler and, when ``log_file``
    is given, a size-rotated file handler that records everything down to DEBUG.

    Returns:
        logging.Logger: The configured root logger
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, logging.DEBUG) if log_file else level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    if log_file:
        file_path = Path(log_dir) / log_file
        file_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(file_path, maxBytes=MAX_LOG_BYTES,
                                       backupCount=LOG_BACKUPS, encoding='utf-8')
        rotating.setLevel(logging.DEBUG)
        rotating.setFormatter(formatter)
        root_logger.addHandler(rotating)
        root_logger.info(f"Logging to file: {file_path}")

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging initialized - Level: {log_level.upper()}")
    return root_logger
