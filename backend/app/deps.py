from collections.abc import Iterator

import httpx
from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.orm import Session, sessionmaker

from .chat.orchestrator import ChatStreamOrchestrator
from .db import SessionLocal, get_db_session
from .redis_client import get_redis_client
from .services.credit_ledger import CreditLedger
from .services.media_service import MediaService, ReplicateClient
from .settings import settings
from .upstream import ChatProvider, OpenRouterClient


async def get_redis() -> Redis:
    """
    FastAPI dependency that provides a shared Redis client.

    It delegates to app.redis_client.get_redis_client() so that the credit
    ledger and the Celery tasks share the same connection pool logic.
    Tests override this dependency with an in-memory fake.
    """
    return get_redis_client()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Shared outbound httpx client created in the application lifespan.

    流式响应会在路由函数返回之后继续读取上游，因此不能使用请求级别
    （yield 依赖）的客户端。
    """
    return request.app.state.http_client


def get_db() -> Iterator[Session]:
    """
    Provide a synchronous SQLAlchemy session.
    """
    yield from get_db_session()


def get_session_factory() -> sessionmaker[Session]:
    """
    Session factory for components that outlive the request scope
    (the credit ledger is used after a streaming response has started).
    """
    return SessionLocal


def get_credit_ledger(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    redis: Redis = Depends(get_redis),
) -> CreditLedger:
    return CreditLedger(session_factory=session_factory, redis=redis, settings=settings)


def get_chat_provider(client: httpx.AsyncClient = Depends(get_http_client)) -> ChatProvider:
    return OpenRouterClient(
        client,
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
    )


def get_chat_orchestrator(
    provider: ChatProvider = Depends(get_chat_provider),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> ChatStreamOrchestrator:
    return ChatStreamOrchestrator(provider=provider, ledger=ledger, settings=settings)


def get_media_service(
    client: httpx.AsyncClient = Depends(get_http_client),
    ledger: CreditLedger = Depends(get_credit_ledger),
) -> MediaService:
    replicate = ReplicateClient(
        client,
        api_key=settings.replicate_api_key,
        base_url=settings.replicate_base_url,
        poll_interval_seconds=settings.media_poll_interval_seconds,
        max_poll_attempts=settings.media_poll_max_attempts,
    )
    return MediaService(replicate=replicate, ledger=ledger, settings=settings)
