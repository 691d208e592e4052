"""
FastAPI 应用装配：中间件、异常处理、路由注册与生命周期资源。
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.admin_routes import router as admin_router
from app.api.v1.chat_routes import router as chat_router
from app.api.v1.credit_routes import router as credit_router
from app.api.v1.media_routes import router as media_router
from app.chat.validation import ChatRequestError
from app.deps import get_session_factory
from app.logging_config import configure_logging, logger
from app.models import Base
from app.redis_client import close_redis_client_for_current_loop
from app.services.media_service import MediaGenerationError
from app.services.user_lock import UserLockTimeout
from app.settings import settings


def _init_schema(app: FastAPI) -> None:
    # 测试会覆盖 get_session_factory，建表跟随实际使用的 engine
    factory = app.dependency_overrides.get(get_session_factory, get_session_factory)()
    Base.metadata.create_all(bind=factory.kw["bind"])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    _init_schema(app)
    app.state.http_client = httpx.AsyncClient(timeout=settings.upstream_timeout)
    logger.info("app: started (environment=%s)", settings.environment)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        await close_redis_client_for_current_loop()


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatRequestError)
    async def _chat_request_error(_: Request, exc: ChatRequestError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(MediaGenerationError)
    async def _media_error(_: Request, exc: MediaGenerationError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code},
        )

    @app.exception_handler(UserLockTimeout)
    async def _lock_timeout(_: Request, exc: UserLockTimeout) -> JSONResponse:
        logger.warning("app: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"error": "账户正忙，请稍后重试", "code": "ACCOUNT_BUSY"},
        )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Fidi Chat Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)

    app.include_router(chat_router)
    app.include_router(credit_router)
    app.include_router(admin_router)
    app.include_router(media_router)

    @app.get("/api/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
