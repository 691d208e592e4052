"""
当前用户的积分余额与流水查询。
"""

from __future__ import annotations

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.deps import get_credit_ledger, get_db
from app.errors import not_found
from app.jwt_auth import AuthenticatedUser, require_jwt_token
from app.models import CreditTransaction
from app.schemas import CreditTransactionResponse, CreditUsageStatsResponse
from app.services.credit_ledger import CreditLedger

router = APIRouter(
    tags=["credits"],
    prefix="/api/credits",
    dependencies=[Depends(require_jwt_token)],
)


@router.get("/me", response_model=CreditUsageStatsResponse)
async def get_my_credits(
    current_user: AuthenticatedUser = Depends(require_jwt_token),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> CreditUsageStatsResponse:
    stats = await ledger.usage_stats(current_user.id)
    if stats is None:
        raise not_found("用户不存在")
    return CreditUsageStatsResponse(user_id=UUID(current_user.id), **asdict(stats))


@router.get("/me/transactions", response_model=list[CreditTransactionResponse])
def list_my_transactions(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    reason: str | None = Query(default=None, max_length=32),
    current_user: AuthenticatedUser = Depends(require_jwt_token),
    db: Session = Depends(get_db),
) -> list[CreditTransaction]:
    q = db.query(CreditTransaction).filter(CreditTransaction.user_id == UUID(current_user.id))
    if reason:
        q = q.filter(CreditTransaction.reason == reason)
    return (
        q.order_by(CreditTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


__all__ = ["router"]
