"""
可用模型清单（白名单）与计费倍率。

只有登记在这里的模型才能被聊天接口调用，防止前端传入任意（昂贵的）模型 id。
数据在导入时加载一次，运行期只读。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

UNKNOWN_MODEL_MULTIPLIER = Decimal("1.0")


class ModelTier(str, Enum):
    FREE = "FREE"
    PAID = "PAID"
    LEGACY = "LEGACY"


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    display_name: str
    tier: ModelTier
    cost_multiplier: Decimal
    provider: str
    description: str = ""

    @property
    def is_free(self) -> bool:
        return self.cost_multiplier == 0


_FREE = Decimal("0")
_PAID = Decimal("1.5")
_LEGACY = Decimal("1.0")

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        "mistralai/devstral-2512:free",
        "Devstral 2512",
        ModelTier.FREE,
        _FREE,
        "Mistral AI",
        "Fast coding assistant optimized for development tasks",
    ),
    ModelDescriptor(
        "kwaipilot/kat-coder-pro:free",
        "KAT Coder Pro",
        ModelTier.FREE,
        _FREE,
        "Kwaipilot",
        "Professional coding assistant with advanced context understanding",
    ),
    ModelDescriptor(
        "openai/gpt-oss-120b:free",
        "GPT OSS 120B",
        ModelTier.FREE,
        _FREE,
        "OpenAI",
        "Open-source optimized GPT model for general tasks",
    ),
    ModelDescriptor(
        "qwen/qwen3-coder:free",
        "Qwen3 Coder",
        ModelTier.FREE,
        _FREE,
        "Qwen",
        "Multilingual coding assistant with strong reasoning",
    ),
    ModelDescriptor(
        "openai/gpt-5.2",
        "GPT-5.2",
        ModelTier.PAID,
        _PAID,
        "OpenAI",
        "Latest GPT model with enhanced reasoning and creativity",
    ),
    ModelDescriptor(
        "anthropic/claude-sonnet-4.5",
        "Claude Sonnet 4.5",
        ModelTier.PAID,
        _PAID,
        "Anthropic",
        "Balanced performance and intelligence for complex tasks",
    ),
    ModelDescriptor(
        "anthropic/claude-opus-4.5",
        "Claude Opus 4.5",
        ModelTier.PAID,
        _PAID,
        "Anthropic",
        "Most capable Claude model for demanding tasks",
    ),
    ModelDescriptor(
        "google/gemini-3-pro-preview",
        "Gemini 3 Pro",
        ModelTier.PAID,
        _PAID,
        "Google",
        "Next-generation multimodal AI with advanced capabilities",
    ),
    ModelDescriptor(
        "google/gemini-3-flash-preview",
        "Gemini 3 Flash",
        ModelTier.PAID,
        _PAID,
        "Google",
        "Fast multimodal model for everyday tasks",
    ),
    ModelDescriptor(
        "minimax/minimax-m2",
        "MiniMax M2",
        ModelTier.PAID,
        _PAID,
        "MiniMax",
        "Efficient model with strong performance on complex tasks",
    ),
    ModelDescriptor(
        "x-ai/glm-4.6",
        "GLM 4.6",
        ModelTier.PAID,
        _PAID,
        "X.AI",
        "Advanced language model with strong reasoning capabilities",
    ),
    ModelDescriptor(
        "x-ai/grok-code-fast-1",
        "Grok Code Fast 1",
        ModelTier.PAID,
        _PAID,
        "X.AI",
        "Low-latency coding model",
    ),
    ModelDescriptor(
        "deepseek/deepseek-v3.2",
        "DeepSeek V3.2",
        ModelTier.LEGACY,
        _LEGACY,
        "DeepSeek",
        "Kept as a fallback target for paid models",
    ),
    ModelDescriptor(
        "openai/gpt-oss-120b",
        "GPT OSS 120B (paid route)",
        ModelTier.LEGACY,
        _LEGACY,
        "OpenAI",
        "Kept as a fallback target for paid models",
    ),
)


class ModelRegistry:
    def __init__(self, models: Iterable[ModelDescriptor]) -> None:
        self._models: dict[str, ModelDescriptor] = {}
        for model in models:
            if model.cost_multiplier < 0:
                raise ValueError(f"negative cost multiplier for {model.id}")
            self._models[model.id] = model

    def is_allowed(self, model_id: object) -> bool:
        return isinstance(model_id, str) and model_id in self._models

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)

    def cost_multiplier(self, model_id: str) -> Decimal:
        model = self._models.get(model_id)
        if model is None:
            return UNKNOWN_MODEL_MULTIPLIER
        return model.cost_multiplier

    def tier(self, model_id: str) -> ModelTier | None:
        model = self._models.get(model_id)
        return model.tier if model is not None else None

    def all(self) -> list[ModelDescriptor]:
        return list(self._models.values())

    def allowed_ids_text(self) -> str:
        return ", ".join(self._models)


default_registry = ModelRegistry(DEFAULT_MODELS)


__all__ = [
    "DEFAULT_MODELS",
    "UNKNOWN_MODEL_MULTIPLIER",
    "ModelDescriptor",
    "ModelRegistry",
    "ModelTier",
    "default_registry",
]
