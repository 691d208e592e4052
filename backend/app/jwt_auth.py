"""
JWT 鉴权依赖。

约定：
- Authorization: Bearer <JWT>，HS256，密钥为 settings.secret_key；
- sub 为用户 id；
- 登录 / 签发流程不在本服务内，create_access_token 仅供脚本与测试使用。
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from sqlalchemy.orm import Session

from app.deps import get_db
from app.errors import forbidden, unauthorized
from app.logging_config import logger
from app.repositories.user_repository import get_user_by_id
from app.settings import settings


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str
    display_name: str | None
    is_admin: bool
    is_active: bool


def _require_secret_key() -> str:
    secret = (settings.secret_key or "").strip()
    if not secret:
        raise RuntimeError("missing SECRET_KEY")
    return secret


def create_access_token(
    user_id: str,
    *,
    expires_in_seconds: int = 86400,
    issued_at: dt.datetime | None = None,
) -> str:
    now = issued_at or dt.datetime.now(dt.UTC)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(seconds=expires_in_seconds)).timestamp()),
    }
    return jwt.encode(claims, _require_secret_key(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, _require_secret_key(), algorithms=[settings.jwt_algorithm])


async def require_jwt_token(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    if not authorization:
        raise unauthorized("缺少 Authorization 请求头")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise unauthorized("Authorization 头格式错误，应为 'Bearer <token>'")

    try:
        claims = decode_access_token(token.strip())
    except ExpiredSignatureError:
        raise unauthorized("登录已过期，请重新登录") from None
    except JWTError as exc:
        logger.info("jwt_auth: invalid token: %s", exc)
        raise unauthorized("无效的访问令牌") from None

    subject = claims.get("sub")
    if not subject:
        raise unauthorized("无效的访问令牌")

    user = get_user_by_id(db, user_id=subject)
    if user is None:
        raise unauthorized("用户不存在")
    if not user.is_active:
        raise forbidden("账户已被禁用")

    return AuthenticatedUser(
        id=str(user.id),
        email=user.email,
        display_name=user.display_name,
        is_admin=bool(user.is_admin),
        is_active=bool(user.is_active),
    )


async def require_admin(
    current_user: AuthenticatedUser = Depends(require_jwt_token),
) -> AuthenticatedUser:
    if not current_user.is_admin:
        raise forbidden("需要管理员权限")
    return current_user


__all__ = [
    "AuthenticatedUser",
    "create_access_token",
    "decode_access_token",
    "require_admin",
    "require_jwt_token",
]
