from __future__ import annotations

import uuid
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.models import User


def _as_uuid(user_id: UUID | str) -> UUID | None:
    if isinstance(user_id, UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        return None


def get_user_by_id(db: Session, *, user_id: UUID | str, for_update: bool = False) -> User | None:
    user_uuid = _as_uuid(user_id)
    if user_uuid is None:
        return None
    if not for_update:
        return db.get(User, user_uuid)
    # SELECT ... FOR UPDATE：Postgres 下串行化同一用户的余额读改写；SQLite 忽略该子句。
    stmt: Select[tuple[User]] = select(User).where(User.id == user_uuid).with_for_update()
    return db.execute(stmt).scalars().first()


def get_user_by_email(db: Session, *, email: str) -> User | None:
    stmt: Select[tuple[User]] = select(User).where(User.email == email)
    return db.execute(stmt).scalars().first()


def list_users(db: Session) -> list[User]:
    stmt: Select[tuple[User]] = select(User).order_by(User.created_at.asc())
    return list(db.execute(stmt).scalars().all())


__all__ = [
    "get_user_by_email",
    "get_user_by_id",
    "list_users",
]
