"""Order aggregation and settlement engine for a pay-per-seat lounge."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("LOUNGE_SETTLEMENT_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "lounge_settlement.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

_console_handler = logging.StreamHandler(sys.stderr)


def _build_logger() -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to the package logger.

    The file keeps INFO and above for the audit trail of payments and
    reversals; the console level can be changed later via
    :func:`set_console_level`.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        audit_handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: audit log disabled, cannot open '{LOG_FILE}': {exc}", file=sys.stderr)
    else:
        audit_handler.setLevel(logging.INFO)
        audit_handler.setFormatter(formatter)
        logger.addHandler(audit_handler)

    _console_handler.setLevel(logging.WARNING)
    _console_handler.setFormatter(formatter)
    logger.addHandler(_console_handler)
    return logger


def set_console_level(level: int) -> None:
    """Change how much of the package log is echoed to stderr."""

    _console_handler.setLevel(level)


log = _build_logger()
log.debug("Logger ready for the 'lounge_settlement' package")
