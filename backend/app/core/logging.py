"""
Logging setup shared by the API process.

Console output always; when a log directory is configured, also a rotating
``combined.log`` for everything and ``error.log`` for ERROR and above.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5

NOISY_LOGGERS = [
    "psycopg.pool",
    "httpx",
    "httpcore",
]


def setup_logging(level: str = "INFO", log_dir: str | None = None) -> logging.Logger:
    """Configure the root logger.

    Calling it again replaces the handlers it installed earlier, so reloading
    the app under uvicorn does not duplicate log lines.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        if getattr(handler, "_wallet_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console._wallet_handler = True
    root_logger.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(
            path / "combined.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        combined.setFormatter(formatter)
        combined._wallet_handler = True
        root_logger.addHandler(combined)

        errors = RotatingFileHandler(
            path / "error.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        errors._wallet_handler = True
        root_logger.addHandler(errors)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
