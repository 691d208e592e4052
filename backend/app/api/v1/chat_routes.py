"""
聊天路由：模型列表 + SSE 流式对话。

路由层只做：鉴权、请求体校验、余额预检（推流前，失败返回 JSON），
其余逻辑交给 ChatStreamOrchestrator。一旦返回 StreamingResponse，
所有错误都以流内事件下发。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.chat.events import encode_stream
from app.chat.orchestrator import ChatStreamOrchestrator
from app.chat.validation import ChatRequestError, validate_chat_payload
from app.deps import get_chat_orchestrator
from app.jwt_auth import AuthenticatedUser, require_jwt_token
from app.logging_config import logger
from app.schemas import ChatModelItem, ChatModelsResponse
from app.settings import settings

router = APIRouter(
    tags=["chat"],
    prefix="/api/chat",
    dependencies=[Depends(require_jwt_token)],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/models", response_model=ChatModelsResponse)
def list_chat_models(
    orchestrator: ChatStreamOrchestrator = Depends(get_chat_orchestrator),
) -> ChatModelsResponse:
    return ChatModelsResponse(
        models=[
            ChatModelItem(
                id=model.id,
                display_name=model.display_name,
                tier=model.tier.value,
                cost_multiplier=float(model.cost_multiplier),
                provider=model.provider,
                description=model.description,
                fallbacks=orchestrator.fallbacks.chain_for(model.id),
            )
            for model in orchestrator.registry.all()
        ]
    )


@router.post("/stream")
async def stream_chat(
    request: Request,
    current_user: AuthenticatedUser = Depends(require_jwt_token),
    orchestrator: ChatStreamOrchestrator = Depends(get_chat_orchestrator),
) -> StreamingResponse:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ChatRequestError(400, "INVALID_MESSAGES", "Request body must be valid JSON") from exc
    chat_request = validate_chat_payload(
        payload,
        registry=orchestrator.registry,
        settings=settings,
    )
    await orchestrator.preflight(current_user.id, chat_request)

    if not orchestrator.provider.is_configured:
        logger.error("chat_routes: upstream provider is not configured")
        raise ChatRequestError(500, "MISSING_API_KEY", "OPENROUTER_API_KEY not configured on server")

    events = orchestrator.stream(
        current_user.id,
        chat_request,
        is_disconnected=request.is_disconnected,
        preflight_checked=True,
    )
    return StreamingResponse(
        encode_stream(events),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


__all__ = ["router"]
