"""
积分账本（Credit Ledger）。

职责：
- 维护每个用户的积分余额、累计用量、本周期用量与上次重置时间；
- 提供原子化的 balance / has_sufficient / deduct / grant 操作；
- 每次成功扣减追加一条 CreditTransaction 流水（只追加，不删除）；
- 读取账户时做“懒迁移”：旧用户首次访问自动补齐默认余额与套餐字段；
- 周期到期（默认 30 天）时将余额重置为套餐额度。

并发约束：同一用户的余额读改写必须串行。这里使用 Redis 用户锁
（跨进程）+ SELECT ... FOR UPDATE（数据库行锁）双重保护。
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from uuid import UUID

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.logging_config import logger
from app.models import (
    REASON_ADMIN_GRANT,
    REASON_PERIOD_RESET,
    CreditTransaction,
    User,
)
from app.repositories.user_repository import get_user_by_id, list_users
from app.services.user_lock import UserLock
from app.settings import Settings, settings as default_settings

PLAN_FREE = "free"
PLAN_PRO = "pro"

# 余额不足时返回给调用方的文案；错误分类器通过该标记区分“本系统余额不足”
# 与上游服务商自身的 402 计费错误。
INSUFFICIENT_BALANCE_MARKER = "余额不足"

_MILLION = Decimal(1_000_000)


@dataclass(frozen=True)
class LedgerResult:
    success: bool
    new_balance: int
    error: str | None = None


@dataclass(frozen=True)
class UsageStats:
    credit_balance: int
    credit_usage_total: int
    credit_usage_this_period: int
    last_credit_reset: dt.datetime
    days_until_reset: int
    plan: str
    monthly_allowance: int
    plan_renew_at: dt.datetime | None


def compute_chat_cost(
    input_tokens: int,
    output_tokens: int,
    multiplier: Decimal | float | int,
    *,
    input_rate_per_million: int,
    output_rate_per_million: int,
    minimum_charge: int = 1,
) -> int:
    """
    计算一次对话的积分消耗：

        ceil((in/1e6 * R_in + out/1e6 * R_out) * multiplier)

    只要产生了用量且倍率非零，至少收取 minimum_charge。
    倍率为 0（免费模型）或没有任何用量时返回 0。
    """
    input_tokens = max(0, int(input_tokens or 0))
    output_tokens = max(0, int(output_tokens or 0))
    factor = Decimal(str(multiplier))
    if factor <= 0 or (input_tokens == 0 and output_tokens == 0):
        return 0

    raw = (
        Decimal(input_tokens) / _MILLION * Decimal(input_rate_per_million)
        + Decimal(output_tokens) / _MILLION * Decimal(output_rate_per_million)
    ) * factor
    cost = int(raw.to_integral_value(rounding=ROUND_CEILING))
    return max(int(minimum_charge), cost)


def plan_allowance(plan: str | None, settings: Settings) -> int:
    """套餐每周期额度；未知套餐按免费档处理。"""
    if plan == PLAN_PRO:
        return int(settings.pro_plan_monthly_credits)
    return int(settings.free_plan_monthly_credits)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class CreditLedger:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        redis: Redis,
        settings: Settings | None = None,
        now: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.now = now
        self.user_lock = UserLock(
            redis,
            ttl_ms=self.settings.credit_lock_ttl_ms,
            retries=self.settings.credit_lock_retries,
            retry_delay_seconds=self.settings.credit_lock_retry_delay_seconds,
        )

    # ------------------------------------------------------------------
    # account preparation (migration-on-read + period reset)
    # ------------------------------------------------------------------

    def monthly_allowance(self, plan: str | None) -> int:
        return plan_allowance(plan, self.settings)

    @property
    def reset_interval(self) -> dt.timedelta:
        return dt.timedelta(days=self.settings.credit_reset_interval_days)

    def _needs_preparation(self, user: User, now: dt.datetime) -> bool:
        if user.credit_balance is None or user.plan is None:
            return True
        if user.credit_usage_total is None or user.credit_usage_this_period is None:
            return True
        if user.last_credit_reset is None:
            return True
        return now - user.last_credit_reset >= self.reset_interval

    def _prepare_account(self, db: Session, user: User, now: dt.datetime) -> None:
        if user.plan is None:
            user.plan = PLAN_FREE
            user.plan_started_at = user.created_at or now
            user.plan_renew_at = now + self.reset_interval
        if user.credit_balance is None:
            user.credit_balance = self.monthly_allowance(user.plan)
            user.last_credit_reset = now
            logger.info(
                "credit_ledger: migrated account user=%s plan=%s balance=%s",
                user.id,
                user.plan,
                user.credit_balance,
            )
        if user.credit_usage_total is None:
            user.credit_usage_total = 0
        if user.credit_usage_this_period is None:
            user.credit_usage_this_period = 0
        if user.last_credit_reset is None:
            user.last_credit_reset = now

        if now - user.last_credit_reset >= self.reset_interval:
            allowance = self.monthly_allowance(user.plan)
            previous = int(user.credit_balance)
            user.credit_balance = allowance
            user.credit_usage_this_period = 0
            user.last_credit_reset = now
            user.plan_renew_at = now + self.reset_interval
            db.add(
                CreditTransaction(
                    user_id=user.id,
                    amount=allowance - previous,
                    reason=REASON_PERIOD_RESET,
                    description="周期额度重置",
                    balance_after=allowance,
                )
            )
            logger.info(
                "credit_ledger: period reset user=%s plan=%s previous=%s new=%s",
                user.id,
                user.plan,
                previous,
                allowance,
            )
        db.add(user)

    @asynccontextmanager
    async def _locked(self, user_id: UUID | str) -> AsyncIterator[None]:
        async with self.user_lock.hold(str(user_id)):
            yield

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def balance(self, user_id: UUID | str) -> int:
        now = self.now()
        with self.session_factory() as db:
            user = get_user_by_id(db, user_id=user_id)
            if user is None:
                logger.warning("credit_ledger: user not found for balance check user=%s", user_id)
                return 0
            if not self._needs_preparation(user, now):
                return int(user.credit_balance)

        async with self._locked(user_id):
            with self.session_factory() as db:
                user = get_user_by_id(db, user_id=user_id, for_update=True)
                if user is None:
                    return 0
                self._prepare_account(db, user, now)
                db.commit()
                return int(user.credit_balance)

    async def has_sufficient(self, user_id: UUID | str, amount: int) -> bool:
        return await self.balance(user_id) >= int(amount)

    async def deduct(
        self,
        user_id: UUID | str,
        amount: int,
        reason: str,
        *,
        description: str | None = None,
        model_name: str | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
    ) -> LedgerResult:
        """
        扣减积分。只应在上游调用成功之后调用。

        余额不足时不会扣成负数，返回 success=False 与当前余额。
        锁获取超时会抛出 UserLockTimeout，由调用方决定如何降级。
        """
        amount = int(amount)
        if amount < 0:
            logger.error("credit_ledger: invalid deduct amount=%s user=%s", amount, user_id)
            return LedgerResult(False, 0, "积分数量无效")
        if amount == 0:
            current = await self.balance(user_id)
            logger.info(
                "credit_ledger: zero-cost operation user=%s reason=%s balance=%s",
                user_id,
                reason,
                current,
            )
            return LedgerResult(True, current)

        now = self.now()
        async with self._locked(user_id):
            with self.session_factory() as db:
                user = get_user_by_id(db, user_id=user_id, for_update=True)
                if user is None:
                    return LedgerResult(False, 0, "用户不存在")
                self._prepare_account(db, user, now)

                current = int(user.credit_balance)
                if current < amount:
                    db.commit()
                    logger.warning(
                        "credit_ledger: insufficient balance user=%s required=%s available=%s reason=%s",
                        user_id,
                        amount,
                        current,
                        reason,
                    )
                    return LedgerResult(False, current, INSUFFICIENT_BALANCE_MARKER)

                new_balance = current - amount
                user.credit_balance = new_balance
                user.credit_usage_total = int(user.credit_usage_total) + amount
                user.credit_usage_this_period = int(user.credit_usage_this_period) + amount
                db.add(user)
                db.add(
                    CreditTransaction(
                        user_id=user.id,
                        amount=-amount,
                        reason=reason,
                        description=description,
                        model_name=model_name,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        balance_after=new_balance,
                    )
                )
                try:
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("credit_ledger: failed to persist deduction user=%s", user_id)
                    return LedgerResult(False, current, "更新账户失败")

        logger.info(
            "credit_ledger: deducted user=%s amount=%s reason=%s previous=%s new=%s",
            user_id,
            amount,
            reason,
            current,
            new_balance,
        )
        return LedgerResult(True, new_balance)

    async def grant(
        self,
        user_id: UUID | str,
        amount: int,
        granted_by: UUID | str,
        *,
        description: str | None = None,
    ) -> LedgerResult:
        """管理员为用户增加积分；入账不计入用量。"""
        with self.session_factory() as db:
            admin = get_user_by_id(db, user_id=granted_by)
            if admin is None or not admin.is_admin:
                logger.warning(
                    "credit_ledger: unauthorized grant attempt admin=%s user=%s",
                    granted_by,
                    user_id,
                )
                return LedgerResult(False, 0, "无权操作")
            admin_id = admin.id

        amount = int(amount)
        if amount <= 0:
            return LedgerResult(False, 0, "积分数量无效")

        now = self.now()
        async with self._locked(user_id):
            with self.session_factory() as db:
                user = get_user_by_id(db, user_id=user_id, for_update=True)
                if user is None:
                    return LedgerResult(False, 0, "用户不存在")
                self._prepare_account(db, user, now)

                current = int(user.credit_balance)
                new_balance = current + amount
                user.credit_balance = new_balance
                db.add(user)
                db.add(
                    CreditTransaction(
                        user_id=user.id,
                        amount=amount,
                        reason=REASON_ADMIN_GRANT,
                        description=description,
                        balance_after=new_balance,
                        created_by=admin_id,
                    )
                )
                try:
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("credit_ledger: failed to persist grant user=%s", user_id)
                    return LedgerResult(False, current, "更新账户失败")

        logger.info(
            "credit_ledger: granted user=%s amount=%s admin=%s previous=%s new=%s",
            user_id,
            amount,
            granted_by,
            current,
            new_balance,
        )
        return LedgerResult(True, new_balance)

    async def usage_stats(self, user_id: UUID | str) -> UsageStats | None:
        # balance() 负责迁移与周期重置，之后的读取看到的都是最新字段。
        await self.balance(user_id)
        now = self.now()
        with self.session_factory() as db:
            user = get_user_by_id(db, user_id=user_id)
            if user is None:
                return None
            return self._stats_for(user, now)

    def _stats_for(self, user: User, now: dt.datetime) -> UsageStats:
        plan = user.plan or PLAN_FREE
        allowance = self.monthly_allowance(plan)
        last_reset = user.last_credit_reset or now
        elapsed_days = (now - last_reset).total_seconds() / 86400
        remaining = max(0.0, self.settings.credit_reset_interval_days - elapsed_days)
        return UsageStats(
            credit_balance=int(user.credit_balance if user.credit_balance is not None else allowance),
            credit_usage_total=int(user.credit_usage_total or 0),
            credit_usage_this_period=int(user.credit_usage_this_period or 0),
            last_credit_reset=last_reset,
            days_until_reset=math.ceil(remaining),
            plan=plan,
            monthly_allowance=allowance,
            plan_renew_at=user.plan_renew_at,
        )

    def overview(self) -> list[tuple[User, UsageStats]]:
        """所有用户的积分概览（只读，不触发迁移）。"""
        now = self.now()
        with self.session_factory() as db:
            return [(user, self._stats_for(user, now)) for user in list_users(db)]

    async def reset_expired_periods(self) -> int:
        """扫描全部用户，对已到期的账户执行周期重置；返回处理的账户数。"""
        now = self.now()
        with self.session_factory() as db:
            due = [user.id for user in list_users(db) if self._needs_preparation(user, now)]

        for user_id in due:
            await self.balance(user_id)
        return len(due)


__all__ = [
    "INSUFFICIENT_BALANCE_MARKER",
    "PLAN_FREE",
    "PLAN_PRO",
    "CreditLedger",
    "LedgerResult",
    "UsageStats",
    "compute_chat_cost",
    "plan_allowance",
]
