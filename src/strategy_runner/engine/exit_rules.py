"""Exit rules for an open position.

One exit reason fires per call. Within signal mode the emergency floor and
profit cap are checked before anything the model says.
"""

from __future__ import annotations

from strategy_runner.models.account import PositionSnapshot
from strategy_runner.models.decision import ExitEvaluation
from strategy_runner.models.intent import AIIntent
from strategy_runner.models.strategy import (
    ExitConfig,
    SignalExit,
    TimeExit,
    TpSlExit,
    TrailingExit,
)

NO_EXIT = ExitEvaluation(should_exit=False)


def unrealized_pnl_pct(position: PositionSnapshot, current_price: float) -> float:
    """PnL of the position at ``current_price`` as a percent of entry notional."""
    if position.avg_entry <= 0 or position.size <= 0:
        return 0.0
    if position.side == "long":
        pnl = (current_price - position.avg_entry) * position.size
    else:
        pnl = (position.avg_entry - current_price) * position.size
    return pnl / (position.avg_entry * position.size) * 100


def evaluate_exit(
    position: PositionSnapshot,
    current_price: float,
    exit_config: ExitConfig,
    intent: AIIntent,
    *,
    peak_price: float | None = None,
    position_age_minutes: float | None = None,
) -> ExitEvaluation:
    pnl_pct = unrealized_pnl_pct(position, current_price)

    if isinstance(exit_config, SignalExit):
        return _signal_exit(position, pnl_pct, exit_config, intent)
    if isinstance(exit_config, TpSlExit):
        return _tp_sl_exit(pnl_pct, exit_config)
    if isinstance(exit_config, TrailingExit):
        return _trailing_exit(position, current_price, pnl_pct, exit_config, peak_price)
    if isinstance(exit_config, TimeExit):
        return _time_exit(exit_config, position_age_minutes)
    return NO_EXIT


def _signal_exit(
    position: PositionSnapshot,
    pnl_pct: float,
    cfg: SignalExit,
    intent: AIIntent,
) -> ExitEvaluation:
    if cfg.max_loss_protection_pct is not None:
        limit = abs(cfg.max_loss_protection_pct)
        if pnl_pct <= -limit:
            return ExitEvaluation(
                should_exit=True,
                reason=f"Max loss protection triggered: {pnl_pct:.2f}% (limit -{limit}%)",
                exit_type="max_loss_protection",
            )

    if cfg.max_profit_cap_pct is not None and pnl_pct >= cfg.max_profit_cap_pct:
        return ExitEvaluation(
            should_exit=True,
            reason=f"Max profit cap reached: {pnl_pct:.2f}% (cap {cfg.max_profit_cap_pct}%)",
            exit_type="max_profit_cap",
        )

    if intent.bias == "close":
        return ExitEvaluation(
            should_exit=True,
            reason="AI signal: close position",
            exit_type="ai_signal",
        )

    reversed_bias = "short" if position.side == "long" else "long"
    if intent.bias == reversed_bias:
        return ExitEvaluation(
            should_exit=True,
            reason=f"AI signal reversed: {position.side} position, {intent.bias} bias",
            exit_type="ai_signal",
        )

    return NO_EXIT


def _tp_sl_exit(pnl_pct: float, cfg: TpSlExit) -> ExitEvaluation:
    if cfg.take_profit_pct is not None and pnl_pct >= cfg.take_profit_pct:
        return ExitEvaluation(
            should_exit=True,
            reason=f"Take profit hit: {pnl_pct:.2f}% >= {cfg.take_profit_pct}%",
            exit_type="take_profit",
        )
    if cfg.stop_loss_pct is not None and pnl_pct <= -abs(cfg.stop_loss_pct):
        return ExitEvaluation(
            should_exit=True,
            reason=f"Stop loss hit: {pnl_pct:.2f}% <= -{abs(cfg.stop_loss_pct)}%",
            exit_type="stop_loss",
        )
    return NO_EXIT


def _trailing_exit(
    position: PositionSnapshot,
    current_price: float,
    pnl_pct: float,
    cfg: TrailingExit,
    peak_price: float | None,
) -> ExitEvaluation:
    # peak_price is the trough for shorts
    if peak_price is not None and peak_price > 0 and current_price != peak_price:
        if position.side == "long":
            retrace_pct = (peak_price - current_price) / peak_price * 100
        else:
            retrace_pct = (current_price - peak_price) / peak_price * 100
        if retrace_pct >= cfg.trailing_stop_pct:
            return ExitEvaluation(
                should_exit=True,
                reason=(
                    f"Trailing stop hit: {retrace_pct:.2f}% from "
                    f"{'peak' if position.side == 'long' else 'trough'} {peak_price:.2f}"
                ),
                exit_type="trailing_stop",
            )

    if cfg.initial_stop_loss_pct is not None and pnl_pct <= -abs(cfg.initial_stop_loss_pct):
        return ExitEvaluation(
            should_exit=True,
            reason=f"Initial stop loss hit: {pnl_pct:.2f}%",
            exit_type="initial_stop_loss",
        )
    return NO_EXIT


def _time_exit(cfg: TimeExit, position_age_minutes: float | None) -> ExitEvaluation:
    if position_age_minutes is not None and position_age_minutes >= cfg.max_hold_minutes:
        return ExitEvaluation(
            should_exit=True,
            reason=f"Max hold time reached: {position_age_minutes:.0f}m >= {cfg.max_hold_minutes:g}m",
            exit_type="time_stop",
        )
    return NO_EXIT
