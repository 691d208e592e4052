"""
聊天 SSE 事件的构造与编码。

编排器产出事件字典（以及结束标记 DONE），路由层再编码为
`data: <json>\n\n` 帧。错误事件只携带面向用户的文案，技术细节只写日志。
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any

from app.chat.error_classifier import ClassifiedError, ErrorType, USER_MESSAGES

DONE = "[DONE]"

ChatEvent = dict[str, Any] | str


def content_event(text: str) -> dict[str, Any]:
    return {"content": text}


def usage_event(
    *,
    input_tokens: int,
    output_tokens: int,
    multiplier: Decimal,
    actual_cost: int,
    new_balance: int,
) -> dict[str, Any]:
    return {
        "usage": {
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "totalTokens": input_tokens + output_tokens,
            "costMultiplier": float(multiplier),
            "actualCost": actual_cost,
            "newBalance": new_balance,
        }
    }


def warning_event(message: str, *, error: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"warning": message}
    if error:
        payload["error"] = error
    return payload


def fallback_event(primary_model: str, actual_model: str) -> dict[str, Any]:
    return {
        "fallback": {
            "used": True,
            "primaryModel": primary_model,
            "actualModel": actual_model,
            "message": f"主模型暂不可用，本次回复由 {actual_model} 生成",
        }
    }


def error_event(
    classified: ClassifiedError | None,
    attempted_models: list[str],
    *,
    all_failed: bool = False,
) -> dict[str, Any]:
    error_type = classified.type if classified is not None else ErrorType.UNKNOWN
    message = classified.user_message if classified is not None else USER_MESSAGES[ErrorType.UNKNOWN]
    payload: dict[str, Any] = {
        "error": message,
        "code": error_type.value,
        "errorType": error_type.value,
        "attemptedModels": list(attempted_models),
        "retryable": False if all_failed or classified is None else classified.retryable,
    }
    if all_failed:
        payload["allFailed"] = True
    return payload


def encode_event(event: ChatEvent) -> str:
    if event == DONE:
        return f"data: {DONE}\n\n"
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


async def encode_stream(events: AsyncIterator[ChatEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_event(event)


__all__ = [
    "DONE",
    "ChatEvent",
    "content_event",
    "encode_event",
    "encode_stream",
    "error_event",
    "fallback_event",
    "usage_event",
    "warning_event",
]
