"""
上游 LLM 聚合服务（OpenRouter）的流式调用客户端。

只负责：发送 chat/completions 请求、解析 SSE 帧、把非 2xx 响应转换为
UpstreamStreamError。重试 / 降级 / 计费都由上层编排器处理。
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.logging_config import logger


class UpstreamStreamError(RuntimeError):
    """上游返回非 2xx，或在流中下发了 error 帧。"""

    def __init__(self, status_code: int | None, text: str) -> None:
        super().__init__(text)
        self.status_code = status_code
        self.text = text


@dataclass(frozen=True)
class UsageReport:
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class StreamChunk:
    content: str | None = None
    usage: UsageReport | None = None


class ChatProvider(Protocol):
    @property
    def is_configured(self) -> bool: ...

    def stream_chat(
        self,
        *,
        model: str,
        messages: Sequence[dict[str, Any]],
    ) -> AsyncIterator[StreamChunk]: ...


def _extract_error_message(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return text


def _parse_usage(raw: Any) -> UsageReport | None:
    if not isinstance(raw, dict):
        return None
    input_tokens = int(raw.get("prompt_tokens") or 0)
    output_tokens = int(raw.get("completion_tokens") or 0)
    if input_tokens == 0 and output_tokens == 0:
        total = int(raw.get("total_tokens") or 0)
        if total == 0:
            return None
        # 只有 total 时按输入计
        input_tokens = total
    return UsageReport(input_tokens=input_tokens, output_tokens=output_tokens)


def parse_sse_payload(payload: dict[str, Any]) -> StreamChunk | None:
    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            code = error.get("code")
            status = code if isinstance(code, int) else 500
            raise UpstreamStreamError(status, str(error.get("message") or error))
        raise UpstreamStreamError(500, str(error))

    content = None
    choices = payload.get("choices") or []
    if choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        content = delta.get("content") or None

    usage = _parse_usage(payload.get("usage"))
    if content is None and usage is None:
        return None
    return StreamChunk(content=content, usage=usage)


class OpenRouterClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    async def stream_chat(
        self,
        *,
        model: str,
        messages: Sequence[dict[str, Any]],
    ) -> AsyncIterator[StreamChunk]:
        if not self.api_key:
            raise UpstreamStreamError(401, "OpenRouter API key is not configured")

        payload = {
            "model": model,
            "messages": list(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        url = f"{self.base_url}/chat/completions"
        async with self.client.stream(
            "POST",
            url,
            headers=self._headers(),
            content=json.dumps(payload, ensure_ascii=False),
        ) as resp:
            if resp.status_code >= 400:
                body = await resp.aread()
                message = _extract_error_message(body)
                logger.warning(
                    "upstream: %s returned %s for model=%s: %s",
                    url,
                    resp.status_code,
                    model,
                    message,
                )
                raise UpstreamStreamError(resp.status_code, message)

            async for line in resp.aiter_lines():
                line = line.strip()
                # 空行是帧分隔符，": ..." 是 OpenRouter 的保活注释
                if not line or line.startswith(":") or not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    decoded = json.loads(data)
                except ValueError:
                    logger.debug("upstream: skip non-json frame for model=%s: %r", model, data[:200])
                    continue
                if not isinstance(decoded, dict):
                    continue
                chunk = parse_sse_payload(decoded)
                if chunk is not None:
                    yield chunk


__all__ = [
    "ChatProvider",
    "OpenRouterClient",
    "StreamChunk",
    "UpstreamStreamError",
    "UsageReport",
    "parse_sse_payload",
]
