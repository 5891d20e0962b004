"""AIIntent: the model's structured call for one tick."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Bias = Literal["long", "short", "neutral", "hold", "close"]


class EntryZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float


class AIIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    bias: Bias = "hold"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    entry_zone: EntryZone | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    risk: float | None = None
    reasoning: str = ""
