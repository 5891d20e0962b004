"""OrderRequest, ExecutionResult, BrokerContext Pydantic models."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from strategy_runner.models.market import MarketSnapshot

ExecutionStatus = Literal["sent", "filled", "failed", "skipped"]


class BrokerContext(BaseModel):
    user_id: str
    session_id: str
    account_id: str
    market: str
    market_data: MarketSnapshot


class OrderRequest(BaseModel):
    market: str
    side: str  # buy, sell
    size: float
    notional_usd: float
    order_type: str = "market"
    reduce_only: bool = False
    client_order_id: str


class ExecutionResult(BaseModel):
    status: ExecutionStatus
    filled_price: float | None = None
    filled_size: float | None = None
    fee_usd: float | None = None
    realized_pnl_usd: float | None = None
    error: str | None = None
    venue_response: dict = {}
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def executed(self) -> bool:
        return self.status in ("sent", "filled")
