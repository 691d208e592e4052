"""
聊天请求体校验与用户输入清洗。

校验失败抛出 ChatRequestError，路由层统一转换为 {"error", "code"} JSON，
此时还未开始推流，也不会触达上游或账本。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from app.chat.model_registry import ModelRegistry
from app.settings import Settings

ALLOWED_ROLES = ("user", "assistant")


class ChatRequestError(Exception):
    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str | list[dict[str, Any]]

    def to_wire(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    model: str
    system_prompt: str
    messages: list[ChatMessage] = field(default_factory=list)

    def wire_messages(self) -> list[dict[str, Any]]:
        return [message.to_wire() for message in self.messages]


_INJECTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\[SYSTEM\]", re.IGNORECASE), "[USER]"),
    (re.compile(r"\[INST\]", re.IGNORECASE), "[USER]"),
    (re.compile(r"<<SYS>>", re.IGNORECASE), ""),
    (re.compile(r"<\|im_start\|>", re.IGNORECASE), ""),
    (re.compile(r"<\|im_end\|>", re.IGNORECASE), ""),
    (re.compile(r"```system", re.IGNORECASE), "```text"),
    (re.compile(r"^(assistant|ai|bot|system):\s*", re.IGNORECASE | re.MULTILINE), "user says: "),
    # 控制字符（保留 \t \n \r）
    (re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]"), ""),
)


def sanitize_user_input(text: str, *, max_chars: int) -> str:
    if not isinstance(text, str):
        return ""
    sanitized = text
    for pattern, replacement in _INJECTION_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized[:max_chars]


def _validate_part(part: Any, *, index: int, role: str, max_chars: int) -> dict[str, Any]:
    if not isinstance(part, dict):
        raise ChatRequestError(400, "INVALID_MESSAGE", f"Invalid content part at message {index}")
    part_type = part.get("type")
    if part_type == "text" and isinstance(part.get("text"), str):
        text = part["text"]
        if role == "user":
            text = sanitize_user_input(text, max_chars=max_chars)
        return {"type": "text", "text": text}
    if part_type == "image_url":
        image = part.get("image_url")
        if isinstance(image, dict) and isinstance(image.get("url"), str) and image["url"]:
            normalized: dict[str, Any] = {"url": image["url"]}
            if image.get("detail") in ("auto", "low", "high"):
                normalized["detail"] = image["detail"]
            return {"type": "image_url", "image_url": normalized}
    raise ChatRequestError(400, "INVALID_MESSAGE", f"Invalid content part at message {index}")


def _validate_message(raw: Any, *, index: int, max_chars: int) -> ChatMessage:
    if not isinstance(raw, dict):
        raise ChatRequestError(400, "INVALID_MESSAGE", f"Invalid message at index {index}")

    role = raw.get("role")
    if not role or not isinstance(role, str):
        raise ChatRequestError(400, "INVALID_ROLE", f"Invalid role at message {index}")
    role = role.lower()
    if role not in ALLOWED_ROLES:
        raise ChatRequestError(400, "INVALID_ROLE", f'Invalid role "{role}" at message {index}')

    content = raw.get("content")
    if isinstance(content, str):
        if role == "user":
            content = sanitize_user_input(content, max_chars=max_chars)
        return ChatMessage(role=role, content=content)
    if isinstance(content, list):
        parts = [
            _validate_part(part, index=index, role=role, max_chars=max_chars) for part in content
        ]
        return ChatMessage(role=role, content=parts)
    raise ChatRequestError(400, "INVALID_MESSAGE", f"Invalid content at message {index}")


def validate_chat_payload(
    payload: Any,
    *,
    registry: ModelRegistry,
    settings: Settings,
) -> ChatRequest:
    if not isinstance(payload, dict):
        raise ChatRequestError(400, "INVALID_MESSAGES", "Request body must be a JSON object")

    model = payload.get("model")
    if not model or not isinstance(model, str):
        raise ChatRequestError(400, "INVALID_MODEL", "Invalid or missing model")
    if not registry.is_allowed(model):
        raise ChatRequestError(
            400,
            "UNAUTHORIZED_MODEL",
            f'Model "{model}" is not authorized. Allowed models: {registry.allowed_ids_text()}',
        )

    system_prompt = payload.get("systemPrompt", "")
    if system_prompt is None:
        system_prompt = ""
    if not isinstance(system_prompt, str):
        raise ChatRequestError(400, "INVALID_PROMPT", "systemPrompt must be a string")
    if settings.chat_require_system_prompt and not system_prompt:
        raise ChatRequestError(400, "INVALID_PROMPT", "Invalid or missing systemPrompt")

    messages = payload.get("messages")
    if not isinstance(messages, list):
        raise ChatRequestError(400, "INVALID_MESSAGES", "Messages must be an array")
    if len(messages) > settings.chat_max_messages:
        raise ChatRequestError(
            400,
            "TOO_MANY_MESSAGES",
            f"Too many messages. Maximum {settings.chat_max_messages} messages per conversation.",
        )

    max_chars = settings.chat_max_message_chars
    return ChatRequest(
        model=model,
        system_prompt=system_prompt,
        messages=[
            _validate_message(raw, index=index, max_chars=max_chars)
            for index, raw in enumerate(messages)
        ],
    )


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatRequestError",
    "sanitize_user_input",
    "validate_chat_payload",
]
