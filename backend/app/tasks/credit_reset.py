"""
Celery 任务：积分周期重置。

账本在每次访问时会懒惰地做周期重置；本任务按固定间隔（默认每小时）
扫描全部用户，让长期不活跃的账户也能按时回到套餐额度，统计数据保持准确。
"""

from __future__ import annotations

import asyncio

from celery import shared_task

from app.celery_app import celery_app
from app.db import SessionLocal
from app.logging_config import logger
from app.redis_client import close_redis_client_for_current_loop, get_redis_client
from app.services.credit_ledger import CreditLedger
from app.settings import settings


@shared_task(name="tasks.credits.reset_expired_periods")
def reset_expired_periods_task() -> int:
    """
    执行一次周期重置扫描。

    返回本次被重置（或迁移）的账户数量。
    """

    async def _run() -> int:
        redis = get_redis_client()
        try:
            ledger = CreditLedger(session_factory=SessionLocal, redis=redis, settings=settings)
            return await ledger.reset_expired_periods()
        finally:
            await close_redis_client_for_current_loop()

    count = asyncio.run(_run())
    if count:
        logger.info("credit_reset: reset credit period for %s accounts", count)
    return count


celery_app.conf.beat_schedule = getattr(celery_app.conf, "beat_schedule", {}) or {}
celery_app.conf.beat_schedule.update(
    {
        "credits-reset-expired-periods": {
            "task": "tasks.credits.reset_expired_periods",
            "schedule": settings.credit_period_reset_interval_seconds,
        }
    }
)


__all__ = ["reset_expired_periods_task"]
