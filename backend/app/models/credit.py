from __future__ import annotations

from uuid import UUID as PyUUID

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, relationship

from .base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin

REASON_CHAT_USAGE = "chat_usage"
REASON_MEDIA_USAGE = "media_usage"
REASON_ADMIN_GRANT = "admin_grant"
REASON_PERIOD_RESET = "period_reset"


class CreditTransaction(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """
    Append-only credit ledger entry.

    `amount` is signed: usage is negative, grants and period resets are
    positive (a reset records the delta that brought the balance back to
    the plan allowance).
    """

    __tablename__ = "credit_transactions"

    user_id: Mapped[PyUUID] = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = Column(BigInteger, nullable=False)
    reason: Mapped[str] = Column(String(32), nullable=False, index=True)
    description: Mapped[str | None] = Column(String(255), nullable=True)
    model_name: Mapped[str | None] = Column(String(128), nullable=True)
    input_tokens: Mapped[int | None] = Column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = Column(Integer, nullable=True)
    balance_after: Mapped[int] = Column(BigInteger, nullable=False)
    created_by: Mapped[PyUUID | None] = Column(UUID(as_uuid=True), nullable=True)

    user: Mapped[User] = relationship(
        "User",
        back_populates="credit_transactions",
        foreign_keys=[user_id],
    )


__all__ = [
    "REASON_ADMIN_GRANT",
    "REASON_CHAT_USAGE",
    "REASON_MEDIA_USAGE",
    "REASON_PERIOD_RESET",
    "CreditTransaction",
]
