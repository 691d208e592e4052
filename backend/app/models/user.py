from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, String, false, true
from sqlalchemy.orm import Mapped, relationship

from app.db.types import UTCDateTime

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    Chat user together with the credit account fields.

    The credit columns are nullable on purpose: accounts created before the
    credit system existed are migrated lazily by the credit ledger the first
    time they are read.
    """

    __tablename__ = "users"

    email: Mapped[str] = Column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = Column(String(255), nullable=True)
    is_active: Mapped[bool] = Column(Boolean, default=True, server_default=true(), nullable=False)
    is_admin: Mapped[bool] = Column(Boolean, default=False, server_default=false(), nullable=False)

    plan: Mapped[str | None] = Column(String(16), nullable=True)
    plan_started_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True)
    plan_renew_at: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True)

    credit_balance: Mapped[int | None] = Column(BigInteger, nullable=True)
    credit_usage_total: Mapped[int | None] = Column(BigInteger, nullable=True)
    credit_usage_this_period: Mapped[int | None] = Column(BigInteger, nullable=True)
    last_credit_reset: Mapped[datetime | None] = Column(UTCDateTime(), nullable=True)

    credit_transactions: Mapped[list[CreditTransaction]] = relationship(
        "CreditTransaction",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="CreditTransaction.user_id",
    )


__all__ = ["User"]
