"""Sari POS transaction core.

Importing the package sets up the ``sari_pos`` logger exactly once. Records
are written to a size-rotated file under ``.logs/`` at the project root and
echoed to stderr; every module logs through the shared :data:`log` object.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("SARI_POS_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "sari_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Return the rotating file handler, or ``None`` when the log directory is unusable."""

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: sari_pos cannot write its log file '{LOG_FILE}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        # already configured by an earlier import
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = _file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)
    return logger


log = _configure_logging()
log.debug("sari_pos logging ready (file: %s)", LOG_FILE)

__all__ = ["log", "LOG_FILE"]
