"""Salon Ledger: workbook-backed sales and intake records served over JSON."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("SALON_LEDGER_LOG_DIR", str(PROJECT_ROOT / ".logs")))
LOG_FILE = LOG_DIR / "salon_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _resolve_level() -> int:
    """Read the log level override from ``SALON_LEDGER_LOG_LEVEL``."""

    override = os.environ.get("SALON_LEDGER_LOG_LEVEL", "").strip().upper()
    if not override:
        return logging.INFO
    level = logging.getLevelName(override)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(f"Warning: unable to open log file '{LOG_FILE}': {exc}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
