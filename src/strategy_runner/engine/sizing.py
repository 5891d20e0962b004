"""Order sizing: notional for an approved entry."""

from __future__ import annotations

from collections.abc import Iterable

from strategy_runner.models.account import AccountSnapshot, PositionSnapshot
from strategy_runner.models.decision import StrategyEngineInput
from strategy_runner.venues import VenueDescriptor

DEFAULT_MAX_LEVERAGE = 2.0
LEVERAGE_HEADROOM = 0.99


def gross_exposure(account: AccountSnapshot, positions: Iterable[PositionSnapshot]) -> float:
    """Broker-reported gross exposure, else the entry notional of open positions."""
    if account.gross_exposure_usd is not None:
        return account.gross_exposure_usd
    return sum(abs(p.entry_notional) for p in positions)


def effective_max_leverage(configured: float | None, venue: VenueDescriptor) -> float:
    if not venue.supports_leverage:
        return 1.0
    return configured if configured is not None else DEFAULT_MAX_LEVERAGE


def size_entry(inp: StrategyEngineInput, default_max_position_usd: float) -> float:
    risk = inp.config.risk
    max_position_usd = (
        risk.max_position_usd if risk.max_position_usd is not None else default_max_position_usd
    )
    leverage = effective_max_leverage(risk.max_leverage, inp.venue)

    exposure = gross_exposure(inp.account, inp.positions)
    room = max(0.0, inp.account.equity * leverage * LEVERAGE_HEADROOM - exposure)

    notional = min(max_position_usd, room)
    if inp.config.entry_exit.confidence_control.confidence_scaling:
        notional *= inp.ai_intent.confidence
    return notional
