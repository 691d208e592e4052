"""
Celery application used for periodic maintenance jobs (credit period resets).

Run a worker with beat:
    celery -A app.celery_app worker -B --loglevel=info
"""

from __future__ import annotations

from celery import Celery

from app.logging_config import configure_logging
from app.settings import settings

celery_app = Celery(
    "fidi",
    broker=settings.celery_broker_url,
    include=["app.tasks.credit_reset"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
)

celery_app.conf.beat_schedule = {}

configure_logging()


__all__ = ["celery_app"]
