"""
Logging setup for Wash CRM.

All modules log through children of the 'washcrm' logger
(logging.getLogger(__name__)), so one handler on 'washcrm' collects
everything:

  file     logs/washcrm.log, rotated at 5 MB, 3 backups kept
  level    LOG_LEVEL env var, INFO when unset or unknown

A line looks like:

    2026-10-18 09:12:44 | INFO     | washcrm.engine.reminders | Planned 2 reminders for offer off-1

CLI commands are wrapped in @log_call, which adds CALL / OK / FAIL lines with
timing:

    2026-10-18 09:12:44 | INFO     | washcrm | OK   offers_complete | 18ms
"""

import functools
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "washcrm.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> logging.Logger:
    """
    Attach the rotating file handler to the 'washcrm' logger.
    Calling it again is a no-op.
    """
    logger = logging.getLogger("washcrm")
    if logger.handlers:
        return logger

    _LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.setLevel(_level_from_env())

    handler = logging.handlers.RotatingFileHandler(
        _LOG_FILE, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def _format_args(args, kwargs) -> str:
    parts = [repr(a) for a in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
    return ", ".join(parts) if parts else "—"


def log_call(func):
    """
    Log entry (DEBUG), success with elapsed ms (INFO) and failure with
    exception type, message and elapsed ms (ERROR, then re-raise).
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("washcrm")
        name = func.__name__
        logger.debug(f"CALL {name} | args=({_format_args(args, kwargs)})")
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise
        ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"OK   {name} | {ms}ms")
        return result

    return wrapper
