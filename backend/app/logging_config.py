from __future__ import annotations

import logging
import sys

from .settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("fidi")


def configure_logging(level: str | None = None) -> None:
    """
    Attach a single stream handler to the project logger.

    Safe to call more than once (e.g. from create_app() and from Celery
    workers); handlers are only installed the first time.
    """
    resolved = (level or settings.log_level or "INFO").upper()
    logger.setLevel(resolved)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.propagate = False


__all__ = ["configure_logging", "logger"]
