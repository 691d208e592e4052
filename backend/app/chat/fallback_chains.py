"""
模型降级链配置。

主模型失败（限流 / 不可用 / 超时等可重试错误）时，按顺序尝试备选模型：
同档位付费模型优先，最后回落到免费模型。
"""

from __future__ import annotations

from collections.abc import Mapping

MAX_FALLBACK_ATTEMPTS = 3

MODEL_FALLBACK_CHAINS: dict[str, tuple[str, ...]] = {
    "mistralai/devstral-2512:free": (),
    "google/gemini-3-flash-preview": (
        "x-ai/grok-code-fast-1",
        "anthropic/claude-sonnet-4.5",
        "mistralai/devstral-2512:free",
    ),
    "x-ai/grok-code-fast-1": (
        "google/gemini-3-flash-preview",
        "deepseek/deepseek-v3.2",
        "mistralai/devstral-2512:free",
    ),
    "anthropic/claude-sonnet-4.5": (
        "google/gemini-3-flash-preview",
        "deepseek/deepseek-v3.2",
        "mistralai/devstral-2512:free",
    ),
    "openai/gpt-oss-120b": (
        "deepseek/deepseek-v3.2",
        "google/gemini-3-flash-preview",
        "mistralai/devstral-2512:free",
    ),
    "deepseek/deepseek-v3.2": (
        "openai/gpt-oss-120b",
        "google/gemini-3-flash-preview",
        "mistralai/devstral-2512:free",
    ),
    "minimax/minimax-m2": (
        "google/gemini-3-flash-preview",
        "deepseek/deepseek-v3.2",
        "mistralai/devstral-2512:free",
    ),
}


class FallbackChainResolver:
    def __init__(
        self,
        chains: Mapping[str, tuple[str, ...]] | None = None,
        *,
        max_attempts: int = MAX_FALLBACK_ATTEMPTS,
    ) -> None:
        self._chains = dict(MODEL_FALLBACK_CHAINS if chains is None else chains)
        self.max_attempts = max_attempts

    def chain_for(self, model_id: str) -> list[str]:
        return list(self._chains.get(model_id, ())[: self.max_attempts])

    def attempt_order(self, model_id: str) -> list[str]:
        """主模型在前，其后是（截断后的）降级链。"""
        return [model_id, *self.chain_for(model_id)]

    def has_fallback(self, model_id: str) -> bool:
        return bool(self.chain_for(model_id))


default_fallbacks = FallbackChainResolver()


__all__ = [
    "MAX_FALLBACK_ATTEMPTS",
    "MODEL_FALLBACK_CHAINS",
    "FallbackChainResolver",
    "default_fallbacks",
]
