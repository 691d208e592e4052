"""
图片 / 视频生成（Replicate predictions API）。

流程：余额预检（固定价格） -> 创建 prediction -> 轮询直到 succeeded / failed /
canceled / 超过最大轮询次数 -> 成功后扣费。扣费失败不影响已生成的结果，
只在响应中附带 warning。
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

import httpx

from app.logging_config import logger
from app.models import REASON_MEDIA_USAGE
from app.services.credit_ledger import INSUFFICIENT_BALANCE_MARKER, CreditLedger
from app.settings import Settings, settings as default_settings


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


PROMPT_SUFFIXES: dict[MediaKind, str] = {
    MediaKind.IMAGE: ", high quality, detailed, professional photography, 8k resolution",
    MediaKind.VIDEO: ", cinematic, smooth motion, high quality, professional",
}


class MediaGenerationError(RuntimeError):
    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


@dataclass(frozen=True)
class MediaResult:
    kind: MediaKind
    url: str
    prediction_id: str | None
    cost: int
    new_balance: int | None
    warning: str | None = None


class ReplicateClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        base_url: str = "https://api.replicate.com/v1",
        poll_interval_seconds: float = 2.0,
        max_poll_attempts: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_attempts = max_poll_attempts
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    async def create_prediction(self, version: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise MediaGenerationError(500, "MISSING_API_KEY", "REPLICATE_API_KEY not configured")
        try:
            resp = await self.client.post(
                f"{self.base_url}/predictions",
                headers=self._headers(),
                json={"version": version, "input": payload},
            )
        except httpx.HTTPError as exc:
            logger.warning("replicate: create prediction failed for %s: %s", version, exc)
            raise MediaGenerationError(502, "UPSTREAM_UNAVAILABLE", "媒体生成服务暂时不可用") from exc

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = None
            message = detail or f"Failed to start generation: HTTP {resp.status_code}"
            logger.warning("replicate: create prediction rejected (%s): %s", resp.status_code, message)
            raise MediaGenerationError(resp.status_code, "GENERATION_FAILED", str(message))
        return resp.json()

    async def wait_for(self, prediction: dict[str, Any]) -> dict[str, Any]:
        get_url = (prediction.get("urls") or {}).get("get")
        if not get_url:
            prediction_id = prediction.get("id")
            get_url = f"{self.base_url}/predictions/{prediction_id}"

        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                resp = await self.client.get(get_url, headers=self._headers())
            except httpx.HTTPError as exc:
                raise MediaGenerationError(502, "POLL_FAILED", "查询生成进度失败") from exc
            if resp.status_code >= 400:
                logger.warning(
                    "replicate: poll request failed status=%s attempt=%s", resp.status_code, attempt
                )
                raise MediaGenerationError(500, "POLL_FAILED", f"Failed to poll prediction: HTTP {resp.status_code}")

            current = resp.json()
            status = current.get("status")
            logger.debug("replicate: poll attempt=%s status=%s", attempt, status)
            if status == "succeeded":
                return current
            if status == "failed":
                raise MediaGenerationError(500, "PREDICTION_FAILED", current.get("error") or "Prediction failed")
            if status == "canceled":
                raise MediaGenerationError(500, "PREDICTION_CANCELED", "Prediction was canceled")
            await self._sleep(self.poll_interval_seconds)

        logger.error("replicate: prediction timed out after %s attempts", self.max_poll_attempts)
        raise MediaGenerationError(408, "TIMEOUT", "Prediction timed out")


def _first_output(output: Any) -> str | None:
    if isinstance(output, list):
        return output[0] if output else None
    if isinstance(output, str):
        return output
    return None


class MediaService:
    def __init__(
        self,
        *,
        replicate: ReplicateClient,
        ledger: CreditLedger,
        settings: Settings | None = None,
    ) -> None:
        self.replicate = replicate
        self.ledger = ledger
        self.settings = settings or default_settings

    def cost_for(self, kind: MediaKind) -> int:
        if kind is MediaKind.VIDEO:
            return int(self.settings.video_generation_cost)
        return int(self.settings.image_generation_cost)

    def model_for(self, kind: MediaKind) -> str:
        if kind is MediaKind.VIDEO:
            return self.settings.video_generation_model
        return self.settings.image_generation_model

    def _input_for(self, kind: MediaKind, prompt: str) -> dict[str, Any]:
        enhanced = f"{prompt}{PROMPT_SUFFIXES[kind]}"
        if kind is MediaKind.IMAGE:
            return {
                "prompt": enhanced,
                "aspect_ratio": "1:1",
                "output_format": "png",
                "output_quality": 90,
            }
        return {"prompt": enhanced}

    async def generate(self, user_id: UUID | str, kind: MediaKind, prompt: Any) -> MediaResult:
        if not prompt or not isinstance(prompt, str) or not prompt.strip():
            raise MediaGenerationError(400, "INVALID_PROMPT", "Invalid or missing prompt")

        cost = self.cost_for(kind)
        if not await self.ledger.has_sufficient(user_id, cost):
            raise MediaGenerationError(
                402,
                "INSUFFICIENT_BALANCE",
                f"积分{INSUFFICIENT_BALANCE_MARKER}，本次{kind.value}生成需要 {cost} 积分",
            )

        model = self.model_for(kind)
        prediction = await self.replicate.create_prediction(model, self._input_for(kind, prompt))
        finished = await self.replicate.wait_for(prediction)
        url = _first_output(finished.get("output"))
        if not url:
            raise MediaGenerationError(500, "NO_OUTPUT", f"No {kind.value} URL in prediction output")

        warning = None
        new_balance: int | None = None
        try:
            result = await self.ledger.deduct(
                user_id,
                cost,
                REASON_MEDIA_USAGE,
                description=f"{kind.value} generation",
                model_name=model,
            )
        except Exception:
            logger.exception("media_service: exception during credit deduction user=%s kind=%s", user_id, kind.value)
            warning = "积分扣除失败（服务异常）"
        else:
            if result.success:
                new_balance = result.new_balance
            else:
                logger.error(
                    "media_service: credit deduction failed user=%s kind=%s error=%s",
                    user_id,
                    kind.value,
                    result.error,
                )
                warning = f"积分扣除失败：{result.error}"

        return MediaResult(
            kind=kind,
            url=url,
            prediction_id=finished.get("id") or prediction.get("id"),
            cost=cost,
            new_balance=new_balance,
            warning=warning,
        )


__all__ = [
    "MediaGenerationError",
    "MediaKind",
    "MediaResult",
    "MediaService",
    "ReplicateClient",
]
