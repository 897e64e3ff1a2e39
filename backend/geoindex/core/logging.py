from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from geoindex.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging() -> None:
    """Configure the root logger once (console, plus a rotating file when GEOINDEX_LOG_DIR is set)."""

    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(settings.log_level or "INFO").upper(),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            log_dir / "geoindex.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logging.getLogger().addHandler(fh)

    # APScheduler logs every wakeup at INFO
    logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
