"""
流式聊天编排器。

状态流转：
    VALIDATING -> PREFLIGHT_CHECK -> ATTEMPTING(model)* -> SUCCEEDED | EXHAUSTED | TERMINATED

特点：
- 候选模型严格按顺序尝试（主模型 + 降级链），绝不并发，避免重复计费 / 重复推流；
- 每个候选拥有独立的墙钟超时窗口（默认 120s），超时归类为 TIMEOUT 并继续下一个候选；
- 每次尝试的结果写入 AttemptOutcome，由循环检查类型决定继续 / 终止，而不是靠异常控制流程；
- 一旦开始推流，所有问题都以流内事件下发；
- 成功后按最终服务模型的倍率扣费，扣费失败只降级为 warning，不影响已输出内容；
- 调用方在尝试阶段断开时停止尝试，不再降级；上游已完成并返回用量后一律结算，
  结算放在 asyncio.shield 中，调用方断开也不会中断扣费。
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from app.chat.error_classifier import (
    ClassifiedError,
    ErrorType,
    classify,
    is_terminal,
    should_fallback,
)
from app.chat.events import (
    DONE,
    ChatEvent,
    content_event,
    error_event,
    fallback_event,
    usage_event,
    warning_event,
)
from app.chat.fallback_chains import FallbackChainResolver, default_fallbacks
from app.chat.message_adapter import MessageAdapter, default_adapter
from app.chat.model_registry import ModelRegistry, default_registry
from app.chat.validation import ChatRequest, ChatRequestError
from app.logging_config import logger
from app.models import REASON_CHAT_USAGE
from app.services.credit_ledger import CreditLedger, compute_chat_cost
from app.settings import Settings, settings as default_settings
from app.upstream import ChatProvider, UsageReport

DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass
class AttemptOutcome:
    model: str
    success: bool = False
    usage: UsageReport | None = None
    error: ClassifiedError | None = None


class ChatStreamOrchestrator:
    def __init__(
        self,
        *,
        provider: ChatProvider,
        ledger: CreditLedger,
        registry: ModelRegistry = default_registry,
        fallbacks: FallbackChainResolver = default_fallbacks,
        adapter: MessageAdapter = default_adapter,
        settings: Settings | None = None,
    ) -> None:
        self.provider = provider
        self.ledger = ledger
        self.registry = registry
        self.fallbacks = fallbacks
        self.adapter = adapter
        self.settings = settings or default_settings

    async def preflight(self, user_id: UUID | str, request: ChatRequest) -> None:
        """
        余额预检：付费模型且余额不高于下限时直接拒绝，不触达上游。

        免费模型（倍率为 0）跳过检查。
        """
        if self.registry.cost_multiplier(request.model) <= 0:
            return
        balance = await self.ledger.balance(user_id)
        floor = self.settings.chat_min_balance_floor
        if balance <= floor:
            logger.info(
                "chat_orchestrator: preflight rejected user=%s model=%s balance=%s floor=%s",
                user_id,
                request.model,
                balance,
                floor,
            )
            raise ChatRequestError(
                402,
                ErrorType.INSUFFICIENT_BALANCE.value,
                f"积分余额不足，当前余额 {balance}，额度将在下个周期开始时重置。",
            )

    async def stream(
        self,
        user_id: UUID | str,
        request: ChatRequest,
        *,
        is_disconnected: DisconnectCheck | None = None,
        preflight_checked: bool = False,
    ) -> AsyncIterator[ChatEvent]:
        if not preflight_checked:
            try:
                await self.preflight(user_id, request)
            except ChatRequestError as exc:
                yield {
                    "error": exc.message,
                    "code": exc.code,
                    "errorType": ErrorType.INSUFFICIENT_BALANCE.value,
                    "attemptedModels": [],
                    "retryable": False,
                }
                return

        candidates = self.fallbacks.attempt_order(request.model)
        attempted: list[str] = []
        last_error: ClassifiedError | None = None
        served: AttemptOutcome | None = None

        for position, model in enumerate(candidates, start=1):
            if is_disconnected is not None and await is_disconnected():
                logger.info(
                    "chat_orchestrator: client disconnected before attempting %s, stop", model
                )
                return

            attempted.append(model)
            logger.info(
                "chat_orchestrator: attempting model=%s (attempt %d/%d) user=%s",
                model,
                position,
                len(candidates),
                user_id,
            )
            outcome = AttemptOutcome(model=model)
            async for event in self._attempt(request, outcome):
                yield event

            if outcome.success:
                served = outcome
                break

            classified = outcome.error
            last_error = classified
            logger.warning(
                "chat_orchestrator: model %s failed type=%s retryable=%s status=%s details=%s",
                model,
                classified.type.value,
                classified.retryable,
                classified.status_code,
                classified.technical_details,
            )
            if is_terminal(classified):
                logger.info("chat_orchestrator: terminal error, stop fallback attempts")
                yield error_event(classified, attempted)
                return
            if not should_fallback(classified):
                logger.info("chat_orchestrator: error not eligible for fallback, stop")
                yield error_event(classified, attempted)
                return

        if served is None:
            logger.error(
                "chat_orchestrator: all models exhausted, attempted=%s", ", ".join(attempted)
            )
            yield error_event(last_error, attempted, all_failed=True)
            return

        # 结算在独立任务中完成，调用方取消只影响后续事件的下发
        yield await asyncio.shield(self._settle(user_id, served))

        if served.model != request.model:
            yield fallback_event(request.model, served.model)

        yield DONE

    async def _attempt(
        self,
        request: ChatRequest,
        outcome: AttemptOutcome,
    ) -> AsyncIterator[ChatEvent]:
        messages = self.adapter.format_messages(
            outcome.model,
            request.system_prompt,
            request.wire_messages(),
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.chat_stream_timeout_seconds
        upstream = self.provider.stream_chat(model=outcome.model, messages=messages)
        try:
            while True:
                try:
                    # 只对等待上游的挂起点计时，向调用方 yield 不在超时范围内
                    async with asyncio.timeout_at(deadline):
                        chunk = await anext(upstream)
                except StopAsyncIteration:
                    break
                if chunk.content:
                    yield content_event(chunk.content)
                if chunk.usage is not None:
                    outcome.usage = chunk.usage
        except Exception as exc:
            outcome.error = classify(exc)
            return
        finally:
            await upstream.aclose()
        outcome.success = True

    async def _settle(self, user_id: UUID | str, outcome: AttemptOutcome) -> ChatEvent:
        usage = outcome.usage
        if usage is None or usage.total_tokens == 0:
            logger.warning(
                "chat_orchestrator: no usage data from upstream for model=%s user=%s, skip debit",
                outcome.model,
                user_id,
            )
            return warning_event("本次请求未返回用量数据，无法统计积分消耗")

        multiplier = self.registry.cost_multiplier(outcome.model)
        cost = compute_chat_cost(
            usage.input_tokens,
            usage.output_tokens,
            multiplier,
            input_rate_per_million=self.settings.credit_input_rate_per_million,
            output_rate_per_million=self.settings.credit_output_rate_per_million,
            minimum_charge=self.settings.credit_min_chat_charge,
        )
        try:
            result = await self.ledger.deduct(
                user_id,
                cost,
                REASON_CHAT_USAGE,
                description=f"Chat completion ({outcome.model})",
                model_name=outcome.model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )
        except Exception:
            logger.exception(
                "chat_orchestrator: exception during credit deduction user=%s model=%s cost=%s",
                user_id,
                outcome.model,
                cost,
            )
            return warning_event("积分扣除失败（服务异常）")

        if not result.success:
            logger.error(
                "chat_orchestrator: credit deduction failed user=%s model=%s cost=%s error=%s",
                user_id,
                outcome.model,
                cost,
                result.error,
            )
            return warning_event("积分扣除失败", error=result.error)

        return usage_event(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            multiplier=multiplier,
            actual_cost=cost,
            new_balance=result.new_balance,
        )


__all__ = ["AttemptOutcome", "ChatStreamOrchestrator", "DisconnectCheck"]
