"""POS terminal engine: tabs, promotion pricing, cash sessions and checkout.

Importing the package configures the ``pos_engine`` logger once. Records go
to a rotating file under ``.logs/`` and to stderr; the threshold can be
lowered for a shift with ``POS_LOG_LEVEL=DEBUG``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "pos_engine.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(raw: Optional[str]) -> int:
    """Map a level name such as ``"debug"`` to its value, falling back to INFO."""

    level = logging.getLevelName((raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _build_file_handler(formatter: logging.Formatter, level: int) -> Optional[logging.Handler]:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except (OSError, PermissionError) as exc:
        # The till keeps selling on console logging alone.
        print(
            f"Warning: POS terminal log file '{LOG_FILE}' unavailable, logging to stderr only: {exc}",
            file=sys.stderr,
        )
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    """Attach the terminal's file and console handlers to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(os.getenv("POS_LOG_LEVEL"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = _build_file_handler(formatter, level)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("POS terminal engine logging at %s", logging.getLevelName(log.level))
