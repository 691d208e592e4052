from __future__ import annotations

import asyncio
import datetime as dt
import json
import time
from collections.abc import AsyncIterator, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.deps import get_chat_provider, get_db, get_redis, get_session_factory
from app.jwt_auth import create_access_token
from app.models import Base, User
from app.upstream import StreamChunk, UsageReport

ADMIN_EMAIL = "admin@example.com"


class InMemoryRedis:
    """
    Minimal async Redis stand-in covering the commands used by the app
    (GET / SET with NX, PX, EX / DELETE) plus the compare-and-delete
    script registered by the user lock.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}

    def _purge(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= time.monotonic():
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._purge(key)
        return self._data.get(key)

    async def set(
        self,
        key: str,
        value: Any,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool | None:
        self._purge(key)
        if nx and key in self._data:
            return None
        self._data[key] = str(value)
        self._expires_at.pop(key, None)
        if px is not None:
            self._expires_at[key] = time.monotonic() + px / 1000
        elif ex is not None:
            self._expires_at[key] = time.monotonic() + ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expires_at.pop(key, None)
        return removed

    def register_script(self, script: str) -> _CompareAndDeleteScript:
        return _CompareAndDeleteScript(self)

    async def aclose(self) -> None:
        return None


class _CompareAndDeleteScript:
    """Runs the lock release script: delete KEYS[0] only if it still holds ARGV[0]."""

    def __init__(self, redis: InMemoryRedis) -> None:
        self.redis = redis

    async def __call__(self, keys=(), args=(), client=None) -> int:
        key, expected = keys[0], str(args[0])
        self.redis._purge(key)
        if self.redis._data.get(key) != expected:
            return 0
        self.redis._data.pop(key, None)
        self.redis._expires_at.pop(key, None)
        return 1


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def seed_user(
    session: Session,
    *,
    email: str = "user@example.com",
    is_admin: bool = False,
    balance: int | None = 1_000_000,
    plan: str | None = "free",
    last_reset: dt.datetime | None = None,
) -> User:
    now = dt.datetime.now(dt.UTC)
    user = User(
        email=email,
        display_name=email.split("@")[0],
        is_active=True,
        is_admin=is_admin,
        plan=plan,
        credit_balance=balance,
        credit_usage_total=0 if balance is not None else None,
        credit_usage_this_period=0 if balance is not None else None,
        last_credit_reset=(last_reset or now) if balance is not None else None,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def install_inmemory_db(
    app: FastAPI,
    *,
    redis: InMemoryRedis | None = None,
) -> sessionmaker[Session]:
    """
    Point the app at a fresh in-memory SQLite database and a fake Redis,
    seeding one admin user.
    """
    SessionLocal = make_session_factory()
    fake_redis = redis or InMemoryRedis()

    def override_get_db() -> Iterator[Session]:
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    async def override_get_redis() -> InMemoryRedis:
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: SessionLocal
    app.dependency_overrides[get_redis] = override_get_redis
    app.state._test_redis = fake_redis

    with SessionLocal() as session:
        seed_user(session, email=ADMIN_EMAIL, is_admin=True)

    return SessionLocal


def install_chat_provider(app: FastAPI, provider: ScriptedChatProvider) -> None:
    app.dependency_overrides[get_chat_provider] = lambda: provider


def jwt_auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@dataclass(frozen=True)
class Hang:
    """Script step that blocks longer than any test timeout."""

    seconds: float = 3600.0


def content(text: str) -> StreamChunk:
    return StreamChunk(content=text)


def usage(input_tokens: int, output_tokens: int) -> StreamChunk:
    return StreamChunk(usage=UsageReport(input_tokens=input_tokens, output_tokens=output_tokens))


class ScriptedChatProvider:
    """
    Fake upstream: each model id maps to a list of steps. A step is a
    StreamChunk (yielded), an exception instance (raised) or Hang (sleeps).
    """

    is_configured = True

    def __init__(self, scripts: dict[str, Sequence[Any]] | None = None) -> None:
        self.scripts = dict(scripts or {})
        self.calls: list[str] = []
        self.sent_messages: dict[str, list[dict[str, Any]]] = {}

    async def stream_chat(
        self,
        *,
        model: str,
        messages: Sequence[dict[str, Any]],
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append(model)
        self.sent_messages[model] = list(messages)
        for step in self.scripts.get(model, ()):
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, Hang):
                await asyncio.sleep(step.seconds)
                continue
            yield step


def parse_sse(body: str) -> list[Any]:
    """Decode an SSE body into a list of JSON payloads ("[DONE]" kept as str)."""
    events: list[Any] = []
    for frame in body.split("\n\n"):
        frame = frame.strip()
        if not frame.startswith("data:"):
            continue
        data = frame[len("data:"):].strip()
        events.append(data if data == "[DONE]" else json.loads(data))
    return events
