"""Logging setup for scheduled-task runs."""

import logging
import os
from datetime import datetime
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None, name: str = "ad_resolver") -> logging.Logger:
    """
    Configure the package logger with a console handler and, when log_dir is
    set, a dated log file (one per day, appended across runs).
    """
    logger = logging.getLogger(name)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, f"{name}-{datetime.now().strftime('%Y%m%d')}.log")
        if not any(isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_path)
                   for h in logger.handlers):
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger
