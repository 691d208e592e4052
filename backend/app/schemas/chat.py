from __future__ import annotations

from pydantic import BaseModel, Field


class ChatModelItem(BaseModel):
    id: str
    display_name: str = Field(..., serialization_alias="displayName")
    tier: str
    cost_multiplier: float = Field(..., serialization_alias="costMultiplier")
    provider: str
    description: str = ""
    fallbacks: list[str] = Field(default_factory=list)


class ChatModelsResponse(BaseModel):
    models: list[ChatModelItem]


__all__ = ["ChatModelItem", "ChatModelsResponse"]
