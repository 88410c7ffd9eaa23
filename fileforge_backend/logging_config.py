"""Logging setup shared by the server and the background housekeeping threads."""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "fileforge_backend"

_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: Path | None = None, level: str = "INFO") -> logging.Logger:
    """Configure the package logger: console plus combined.log and error.log.

    Safe to call more than once; existing handlers are replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        combined_handler = RotatingFileHandler(
            log_dir / "combined.log",
            maxBytes=10485760,  # 10MB
            backupCount=5,
        )
        combined_handler.setFormatter(formatter)
        logger.addHandler(combined_handler)

        error_handler = RotatingFileHandler(
            log_dir / "error.log",
            maxBytes=10485760,  # 10MB
            backupCount=5,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        logger.addHandler(error_handler)

    # Per-request access lines drown out housekeeping output.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logger
