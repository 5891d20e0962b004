"""Engine input bundle and StrategyDecision output models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from strategy_runner.models.account import AccountSnapshot, PositionSnapshot
from strategy_runner.models.intent import AIIntent
from strategy_runner.models.market import IndicatorsSnapshot, MarketSnapshot
from strategy_runner.models.strategy import StrategyConfig
from strategy_runner.venues import HYPERLIQUID, VenueDescriptor

OrderSide = Literal["buy", "sell"]
ExitType = Literal[
    "max_loss_protection",
    "max_profit_cap",
    "ai_signal",
    "take_profit",
    "stop_loss",
    "trailing_stop",
    "initial_stop_loss",
    "time_stop",
]
FailedCheck = Literal[
    "position",
    "venue_constraint",
    "confidence",
    "guardrails",
    "intent",
    "frequency",
    "cooldown",
    "reentry",
    "behaviors",
    "risk",
]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class RecentTrade(_Frozen):
    side: OrderSide
    timestamp: datetime


class StrategyEngineInput(_Frozen):
    """Everything one tick's decision depends on.

    The caller resolves all state (venue, position age, tracked peak, trade
    counts) before calling the engine.
    """

    market: str
    market_snapshot: MarketSnapshot
    positions: tuple[PositionSnapshot, ...] = ()
    current_position: PositionSnapshot | None = None
    account: AccountSnapshot
    ai_intent: AIIntent
    indicators: IndicatorsSnapshot | None = None
    config: StrategyConfig
    venue: VenueDescriptor = HYPERLIQUID
    position_age_minutes: float | None = None
    peak_price: float | None = None
    recent_trades: tuple[RecentTrade, ...] = ()  # newest first
    trades_last_hour: int = 0
    trades_last_day: int = 0

    @property
    def has_position(self) -> bool:
        return self.current_position is not None


class OrderIntent(_Frozen):
    market: str
    side: OrderSide
    notional_usd: float
    type: Literal["entry", "exit"]
    reason: str
    exit_type: ExitType | None = None


class FilterCheck(_Frozen):
    passed: bool = True
    reason: str | None = None


class FilterResults(_Frozen):
    position: FilterCheck = FilterCheck()
    venue: FilterCheck = FilterCheck()
    confidence: FilterCheck = FilterCheck()
    guardrails: FilterCheck = FilterCheck()
    intent: FilterCheck = FilterCheck()
    trade_control: FilterCheck = FilterCheck()
    behaviors: FilterCheck = FilterCheck()
    risk: FilterCheck = FilterCheck()


class RiskCheck(_Frozen):
    passed: bool
    rule: str
    reason: str = "OK"


class RiskResult(_Frozen):
    passed: bool
    reason: str | None = None
    checks: tuple[RiskCheck, ...] = ()

    @property
    def failures(self) -> list[RiskCheck]:
        return [c for c in self.checks if not c.passed]


class ExitEvaluation(_Frozen):
    should_exit: bool
    reason: str = ""
    exit_type: ExitType | None = None


class EntryEvaluation(_Frozen):
    can_enter: bool
    reason: str = ""
    failed_check: FailedCheck | None = None


class StrategyDecision(_Frozen):
    timestamp: datetime
    intent: AIIntent
    action: Literal["execute", "skip"]
    action_summary: str
    orders: tuple[OrderIntent, ...] = ()
    risk_result: RiskResult
    filter_results: FilterResults


class DecisionDiff(_Frozen):
    field: str
    a: str
    b: str
