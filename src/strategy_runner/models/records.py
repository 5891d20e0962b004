"""Persistence-facing records and the tick result."""

from datetime import datetime

from pydantic import BaseModel

from strategy_runner.models.strategy import StrategyConfig


class SessionRecord(BaseModel):
    id: str
    user_id: str
    strategy_id: str
    mode: str  # virtual, live
    venue: str = "hyperliquid"
    status: str  # running, paused, stopped
    market: str
    cadence_seconds: int | None = None
    account_id: str | None = None
    last_tick_at: datetime | None = None


class StrategyRecord(BaseModel):
    id: str
    user_id: str
    name: str = ""
    prompt: str = ""
    model_provider: str = ""
    model_name: str = ""
    ai_connection_id: str | None = None
    config: StrategyConfig = StrategyConfig()


class AccountRecord(BaseModel):
    id: str
    user_id: str
    mode: str
    venue: str = "hyperliquid"
    starting_equity: float
    cash_balance: float
    equity: float


class PositionRecord(BaseModel):
    id: int
    account_id: str
    market: str
    side: str  # long, short
    size: float
    avg_entry: float
    unrealized_pnl: float = 0.0
    peak_price: float | None = None
    opened_at: datetime | None = None


class DecisionRecord(BaseModel):
    id: str
    session_id: str
    action: str
    action_summary: str = ""
    executed: bool = False
    error: str | None = None
    created_at: datetime | None = None


class OrderRecord(BaseModel):
    id: str
    session_id: str
    decision_id: str
    mode: str
    client_order_id: str
    market: str
    side: str | None = None
    size: float = 0.0
    status: str
    created_at: datetime | None = None


class TickResult(BaseModel):
    success: bool
    decision_id: str | None = None
    order_id: str | None = None
    action: str | None = None
    order_status: str | None = None
    error: str | None = None
    skipped: bool = False
    replayed: bool = False
