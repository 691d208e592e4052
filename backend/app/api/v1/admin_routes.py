"""
管理员积分管理：为用户入账、查看单个用户统计、查看全站概览。
"""

from __future__ import annotations

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends

from app.deps import get_credit_ledger
from app.errors import bad_request, http_error, not_found
from app.jwt_auth import AuthenticatedUser, require_admin
from app.schemas import (
    CreditOverviewResponse,
    CreditUsageStatsResponse,
    TokenGrantRequest,
    TokenGrantResponse,
    UserCreditOverviewItem,
)
from app.services.credit_ledger import CreditLedger
from app.settings import settings

router = APIRouter(
    tags=["admin"],
    prefix="/api/admin/tokens",
    dependencies=[Depends(require_admin)],
)


@router.post("/grant", response_model=TokenGrantResponse)
async def grant_tokens(
    payload: TokenGrantRequest,
    current_user: AuthenticatedUser = Depends(require_admin),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> TokenGrantResponse:
    if payload.amount > settings.credit_grant_max_amount:
        raise bad_request(
            f"单次入账不能超过 {settings.credit_grant_max_amount} 积分",
            error="invalid_amount",
        )

    result = await ledger.grant(
        payload.user_id,
        payload.amount,
        current_user.id,
        description=payload.description,
    )
    if not result.success:
        if result.error == "用户不存在":
            raise not_found(result.error)
        raise http_error(400, error="grant_failed", message=result.error or "入账失败")

    return TokenGrantResponse(
        success=True,
        user_id=payload.user_id,
        amount=payload.amount,
        new_balance=result.new_balance,
    )


@router.get("/stats/{user_id}", response_model=CreditUsageStatsResponse)
async def get_user_token_stats(
    user_id: UUID,
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> CreditUsageStatsResponse:
    stats = await ledger.usage_stats(user_id)
    if stats is None:
        raise not_found("用户不存在")
    return CreditUsageStatsResponse(user_id=user_id, **asdict(stats))


@router.get("/overview", response_model=CreditOverviewResponse)
def get_token_overview(
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> CreditOverviewResponse:
    items = [
        UserCreditOverviewItem(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            is_admin=bool(user.is_admin),
            **asdict(stats),
        )
        for user, stats in ledger.overview()
    ]
    return CreditOverviewResponse(
        total_users=len(items),
        total_balance=sum(item.credit_balance for item in items),
        total_usage=sum(item.credit_usage_total for item in items),
        total_usage_this_period=sum(item.credit_usage_this_period for item in items),
        users=items,
    )


__all__ = ["router"]
