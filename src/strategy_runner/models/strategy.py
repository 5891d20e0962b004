"""StrategyConfig: the resolved rule set a session ticks with.

Configs are stored on the strategy record as camelCase JSON
(``entryExit.tradeControl.maxTradesPerHour``); every model here accepts
either that shape or snake_case field names.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Guardrails(_ConfigModel):
    min_confidence: float | None = None
    allow_long: bool = True
    allow_short: bool = True


class EntryBehaviors(_ConfigModel):
    trend: bool = True
    breakout: bool = True
    mean_reversion: bool = True

    def any_enabled(self) -> bool:
        return self.trend or self.breakout or self.mean_reversion


class EntryTiming(_ConfigModel):
    wait_for_close: bool = False
    max_slippage_pct: float = 0.1


class EntryConfig(_ConfigModel):
    mode: Literal["signal"] = "signal"
    behaviors: EntryBehaviors = EntryBehaviors()
    timing: EntryTiming = EntryTiming()


# --- Exit modes (tagged on ``mode``) ---


class SignalExit(_ConfigModel):
    mode: Literal["signal"] = "signal"
    max_loss_protection_pct: float | None = None
    max_profit_cap_pct: float | None = None


class TpSlExit(_ConfigModel):
    mode: Literal["tp_sl"] = "tp_sl"
    take_profit_pct: float | None = None
    stop_loss_pct: float | None = None


class TrailingExit(_ConfigModel):
    mode: Literal["trailing"] = "trailing"
    trailing_stop_pct: float = Field(gt=0)
    initial_stop_loss_pct: float | None = None


class TimeExit(_ConfigModel):
    mode: Literal["time"] = "time"
    max_hold_minutes: float = Field(gt=0)


ExitConfig = Annotated[
    Union[SignalExit, TpSlExit, TrailingExit, TimeExit],
    Field(discriminator="mode"),
]


class TradeControl(_ConfigModel):
    max_trades_per_hour: int = 2
    max_trades_per_day: int = 10
    cooldown_minutes: float = 15
    min_hold_minutes: float = 5
    allow_reentry_same_direction: bool = False


class ConfidenceControl(_ConfigModel):
    min_confidence: float | None = None
    confidence_scaling: bool = False


class EntryExitConfig(_ConfigModel):
    entry: EntryConfig = EntryConfig()
    exit: ExitConfig = SignalExit()
    trade_control: TradeControl = TradeControl()
    confidence_control: ConfidenceControl = ConfidenceControl()


class RiskLimits(_ConfigModel):
    max_daily_loss_pct: float | None = None  # percent units: 5 means 5%
    max_position_usd: float | None = Field(default=None, gt=0)
    max_leverage: float | None = Field(default=None, gt=0)


class StrategyConfig(_ConfigModel):
    guardrails: Guardrails = Guardrails()
    entry_exit: EntryExitConfig = EntryExitConfig()
    risk: RiskLimits = RiskLimits()
    cadence_seconds: int | None = None

    @property
    def effective_min_confidence(self) -> float:
        floor = self.entry_exit.confidence_control.min_confidence
        if floor is None:
            floor = self.guardrails.min_confidence
        return 0.65 if floor is None else floor
