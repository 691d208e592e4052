from __future__ import annotations

from pydantic import BaseModel, Field


class MediaGenerationRequest(BaseModel):
    prompt: str | None = None


class MediaGenerationResponse(BaseModel):
    url: str
    prediction_id: str | None = Field(default=None, serialization_alias="predictionId")
    cost: int
    new_balance: int | None = Field(default=None, serialization_alias="newBalance")
    warning: str | None = None


__all__ = ["MediaGenerationRequest", "MediaGenerationResponse"]
