from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .credit import CreditUsageStatsResponse


class TokenGrantRequest(BaseModel):
    user_id: UUID = Field(..., alias="userId")
    amount: int = Field(..., gt=0, description="要增加的积分数量（必须为正数）")
    description: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class TokenGrantResponse(BaseModel):
    success: bool
    user_id: UUID = Field(..., serialization_alias="userId")
    amount: int
    new_balance: int = Field(..., serialization_alias="newBalance")


class UserCreditOverviewItem(CreditUsageStatsResponse):
    email: str
    display_name: str | None = None
    is_admin: bool


class CreditOverviewResponse(BaseModel):
    total_users: int
    total_balance: int
    total_usage: int
    total_usage_this_period: int
    users: list[UserCreditOverviewItem]


__all__ = [
    "CreditOverviewResponse",
    "TokenGrantRequest",
    "TokenGrantResponse",
    "UserCreditOverviewItem",
]
