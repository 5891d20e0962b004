"""Redis Stream message schemas shared with the venue gateway and market feed."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class StreamMessage(BaseModel):
    """Envelope for all Redis Stream communications."""

    msg_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = ""
    type: str = ""
    payload: dict = {}
    metadata: dict = {}

    def to_redis(self) -> dict[str, str]:
        """Serialize to flat dict for XADD."""
        return {"data": self.model_dump_json()}

    @classmethod
    def from_redis(cls, data: dict[bytes | str, bytes | str]) -> StreamMessage:
        raw = data.get(b"data") or data.get("data")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.model_validate_json(raw)


class LiveOrderMessage(StreamMessage):
    """Published by the runner to trade:orders."""

    source: str = "strategy_runner"
    type: str = "live_order"


class FillMessage(StreamMessage):
    """Published by the venue gateway to trade:fills."""

    source: str = "venue_gateway"
    type: str = "fill"


class PositionsMessage(StreamMessage):
    """Published by the venue gateway to trade:positions:<account_id>."""

    source: str = "venue_gateway"
    type: str = "positions"


class AccountStateMessage(StreamMessage):
    """Published by the venue gateway to trade:account:<account_id>."""

    source: str = "venue_gateway"
    type: str = "account_state"


class MarkPriceMessage(StreamMessage):
    """Published by the market feed to market:prices."""

    source: str = "market_feed"
    type: str = "mark_price"


class OrderbookTopMessage(StreamMessage):
    """Published by the market feed to market:orderbook."""

    source: str = "market_feed"
    type: str = "orderbook_top"
