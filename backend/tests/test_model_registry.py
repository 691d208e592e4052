from __future__ import annotations

from decimal import Decimal

import pytest

from app.chat.fallback_chains import (
    MAX_FALLBACK_ATTEMPTS,
    MODEL_FALLBACK_CHAINS,
    FallbackChainResolver,
    default_fallbacks,
)
from app.chat.model_registry import (
    ModelDescriptor,
    ModelRegistry,
    ModelTier,
    default_registry,
)


def test_registry_allowlist_and_multipliers():
    assert default_registry.is_allowed("mistralai/devstral-2512:free")
    assert default_registry.is_allowed("openai/gpt-5.2")
    assert not default_registry.is_allowed("openai/gpt-4-turbo")
    assert not default_registry.is_allowed(None)
    assert not default_registry.is_allowed(42)

    assert default_registry.cost_multiplier("qwen/qwen3-coder:free") == Decimal("0")
    assert default_registry.cost_multiplier("anthropic/claude-opus-4.5") == Decimal("1.5")
    assert default_registry.cost_multiplier("deepseek/deepseek-v3.2") == Decimal("1.0")


def test_unknown_model_uses_neutral_multiplier_and_no_tier():
    assert default_registry.cost_multiplier("vendor/unknown") == Decimal("1.0")
    assert default_registry.tier("vendor/unknown") is None
    assert default_registry.get("vendor/unknown") is None


def test_every_free_model_is_unmetered():
    for model in default_registry.all():
        if model.tier is ModelTier.FREE:
            assert model.is_free
        else:
            assert model.cost_multiplier > 0


def test_registry_rejects_negative_multiplier():
    with pytest.raises(ValueError):
        ModelRegistry([ModelDescriptor("a/b", "AB", ModelTier.PAID, Decimal("-1"), "A")])


def test_allowed_ids_text_lists_every_model():
    text = default_registry.allowed_ids_text()
    for model in default_registry.all():
        assert model.id in text


def test_fallback_chains_never_reference_self_and_stay_within_registry():
    for primary, chain in MODEL_FALLBACK_CHAINS.items():
        assert primary not in chain
        assert default_registry.is_allowed(primary)
        for candidate in chain:
            assert default_registry.is_allowed(candidate), candidate


def test_attempt_order_is_primary_then_chain():
    order = default_fallbacks.attempt_order("google/gemini-3-flash-preview")
    assert order == [
        "google/gemini-3-flash-preview",
        "x-ai/grok-code-fast-1",
        "anthropic/claude-sonnet-4.5",
        "mistralai/devstral-2512:free",
    ]


def test_chain_is_truncated_to_max_attempts():
    resolver = FallbackChainResolver({"m": ("a", "b", "c", "d", "e")})
    assert resolver.chain_for("m") == ["a", "b", "c"]
    assert len(resolver.attempt_order("m")) == MAX_FALLBACK_ATTEMPTS + 1


def test_model_without_chain_has_no_fallback():
    assert default_fallbacks.chain_for("mistralai/devstral-2512:free") == []
    assert default_fallbacks.attempt_order("openai/gpt-5.2") == ["openai/gpt-5.2"]
    assert not default_fallbacks.has_fallback("openai/gpt-5.2")
    assert default_fallbacks.has_fallback("minimax/minimax-m2")
