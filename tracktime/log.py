"""Logging setup for TrackTime.

Modules log through ``logging.getLogger(__name__)``; this installs the
handlers on the package logger once, at startup.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .settings import APP_SUPPORT_DIR

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    level: int | str = logging.INFO,
    log_dir: Path | None = None,
    *,
    console: bool = False,
    persistent: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Attach file/console handlers to the ``tracktime`` logger.

    Safe to call repeatedly: handlers are named and only added once.
    """
    logger = logging.getLogger("tracktime")
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if persistent and not _has_handler(logger, "tracktime:file"):
        log_dir = log_dir or APP_SUPPORT_DIR / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=log_dir / "tracktime.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(fmt)
        handler.set_name("tracktime:file")
        logger.addHandler(handler)

    if console and not _has_handler(logger, "tracktime:console"):
        handler = logging.StreamHandler()
        handler.setFormatter(fmt)
        handler.set_name("tracktime:console")
        logger.addHandler(handler)

    return logger


def _has_handler(logger: logging.Logger, name: str) -> bool:
    return any(h.get_name() == name for h in logger.handlers)
