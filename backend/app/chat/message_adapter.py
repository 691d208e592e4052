"""
按模型家族把 (system_prompt, history) 转换为上游接受的 messages 结构。

策略选择按显式有序规则表进行：
1. 精确匹配模型 id；
2. 前缀匹配，前缀越长优先级越高；
3. 默认策略（标准 system 消息 + 原样历史）。

x-ai 的 grok 系列不支持 system 角色，改为把系统提示拼进第一条 user 消息。
若第一条消息不是 user，则系统提示被丢弃（已知行为，保持不变）。
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

Message = dict[str, Any]
Strategy = Callable[[str, list[Message]], list[Message]]


def system_role_strategy(system_prompt: str, messages: list[Message]) -> list[Message]:
    if not system_prompt:
        return list(messages)
    return [{"role": "system", "content": system_prompt}, *messages]


def system_in_first_user_strategy(system_prompt: str, messages: list[Message]) -> list[Message]:
    formatted = list(messages)
    if not system_prompt or not formatted or formatted[0].get("role") != "user":
        return formatted

    first = formatted[0]
    content = first.get("content")
    if isinstance(content, str):
        formatted[0] = {**first, "content": f"{system_prompt}\n\n{content}"}
    elif isinstance(content, list):
        formatted[0] = {**first, "content": [{"type": "text", "text": system_prompt}, *content]}
    return formatted


@dataclass(frozen=True)
class AdapterRule:
    name: str
    matches: Callable[[str], bool]
    strategy: Strategy


def _exact(model_id: str, strategy: Strategy) -> AdapterRule:
    return AdapterRule(f"exact:{model_id}", lambda candidate: candidate == model_id, strategy)


def _prefix_rules(prefixes: dict[str, Strategy]) -> list[AdapterRule]:
    ordered = sorted(prefixes.items(), key=lambda item: len(item[0]), reverse=True)
    return [
        AdapterRule(f"prefix:{prefix}", lambda candidate, p=prefix: candidate.startswith(p), strategy)
        for prefix, strategy in ordered
    ]


DEFAULT_PREFIXES: dict[str, Strategy] = {
    "x-ai": system_in_first_user_strategy,
    "x-ai/grok": system_in_first_user_strategy,
    # GLM 走 x-ai 路由，但原生支持 system 角色。
    "x-ai/glm": system_role_strategy,
    "anthropic": system_role_strategy,
    "openai": system_role_strategy,
    "google": system_role_strategy,
    "mistralai": system_role_strategy,
    "qwen": system_role_strategy,
    "kwaipilot": system_role_strategy,
    "minimax": system_role_strategy,
    "deepseek": system_role_strategy,
}


class MessageAdapter:
    def __init__(
        self,
        rules: Sequence[AdapterRule] | None = None,
        *,
        default: Strategy = system_role_strategy,
    ) -> None:
        self.rules = list(rules) if rules is not None else _prefix_rules(DEFAULT_PREFIXES)
        self.default = default

    @classmethod
    def from_tables(
        cls,
        *,
        exact: dict[str, Strategy] | None = None,
        prefixes: dict[str, Strategy] | None = None,
        default: Strategy = system_role_strategy,
    ) -> MessageAdapter:
        rules = [_exact(model_id, strategy) for model_id, strategy in (exact or {}).items()]
        rules.extend(_prefix_rules(prefixes if prefixes is not None else DEFAULT_PREFIXES))
        return cls(rules, default=default)

    def strategy_for(self, model_id: str) -> Strategy:
        for rule in self.rules:
            if rule.matches(model_id):
                return rule.strategy
        return self.default

    def format_messages(
        self,
        model_id: str,
        system_prompt: str,
        messages: Sequence[Message],
    ) -> list[Message]:
        return self.strategy_for(model_id)(system_prompt or "", list(messages))


default_adapter = MessageAdapter()


__all__ = [
    "AdapterRule",
    "MessageAdapter",
    "default_adapter",
    "system_in_first_user_strategy",
    "system_role_strategy",
]
