"""Warehouse stock ledger backed by an Excel master workbook.

Importing the package configures the shared ``log`` object used by every
module. Log records go to a rotating file and to stderr; the directory and
level can be overridden with ``WAREHOUSE_LEDGER_LOG_DIR`` and
``WAREHOUSE_LEDGER_LOG_LEVEL``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("WAREHOUSE_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "warehouse_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(raw: str | None) -> int:
    level = logging.getLevelName((raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers once per interpreter."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(os.environ.get("WAREHOUSE_LEDGER_LOG_LEVEL"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"Warning: ledger log file disabled ({LOG_FILE}): {exc}", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Ledger logging ready (file: %s)", LOG_FILE)
