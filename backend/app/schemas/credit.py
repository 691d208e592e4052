from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreditUsageStatsResponse(BaseModel):
    user_id: UUID
    credit_balance: int = Field(..., description="当前积分余额")
    credit_usage_total: int = Field(..., description="累计消耗积分")
    credit_usage_this_period: int = Field(..., description="本周期已消耗积分")
    last_credit_reset: datetime
    days_until_reset: int = Field(..., description="距离下次周期重置的天数")
    plan: str
    monthly_allowance: int = Field(..., description="套餐每周期额度")
    plan_renew_at: datetime | None = None


class CreditTransactionResponse(BaseModel):
    id: UUID
    user_id: UUID
    amount: int = Field(..., description="积分变动值；正数为增加，负数为扣减")
    reason: str = Field(..., description="变动原因：chat_usage / media_usage / admin_grant / period_reset")
    description: str | None = None
    model_name: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    balance_after: int
    created_by: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


__all__ = ["CreditTransactionResponse", "CreditUsageStatsResponse"]
