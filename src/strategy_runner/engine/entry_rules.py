"""Entry rules: first failing check wins."""

from __future__ import annotations

from strategy_runner.models.decision import EntryEvaluation, StrategyEngineInput


def _reject(failed_check: str, reason: str) -> EntryEvaluation:
    return EntryEvaluation(can_enter=False, reason=reason, failed_check=failed_check)


def entry_side(bias: str) -> str | None:
    """Order side a directional bias would open with."""
    return {"long": "buy", "short": "sell"}.get(bias)


def evaluate_entry(inp: StrategyEngineInput) -> EntryEvaluation:
    intent = inp.ai_intent
    config = inp.config
    guardrails = config.guardrails
    trade_control = config.entry_exit.trade_control

    if inp.has_position:
        return _reject("position", f"Already in position for {inp.market}")

    if intent.bias == "short" and not inp.venue.allows_short:
        return _reject("venue_constraint", inp.venue.short_rejection_message())

    min_confidence = config.effective_min_confidence
    if intent.confidence < min_confidence:
        return _reject(
            "confidence",
            f"Confidence {intent.confidence * 100:.0f}% below minimum {min_confidence * 100:.0f}%",
        )

    if intent.bias == "long" and not guardrails.allow_long:
        return _reject("guardrails", "Long entries disabled by guardrails")
    if intent.bias == "short" and not guardrails.allow_short:
        return _reject("guardrails", "Short entries disabled by guardrails")
    if intent.bias == "neutral":
        return _reject("intent", "AI bias is neutral (no trade)")
    if intent.bias in ("hold", "close"):
        # close without a position and hold both mean "do nothing" here
        return _reject("intent", f"AI decision: {intent.bias} (no entry)")

    if inp.trades_last_hour >= trade_control.max_trades_per_hour:
        return _reject(
            "frequency",
            f"Max trades per hour reached ({inp.trades_last_hour}/{trade_control.max_trades_per_hour})",
        )
    if inp.trades_last_day >= trade_control.max_trades_per_day:
        return _reject(
            "frequency",
            f"Max trades per day reached ({inp.trades_last_day}/{trade_control.max_trades_per_day})",
        )

    last_trade = inp.recent_trades[0] if inp.recent_trades else None
    if last_trade is not None and trade_control.cooldown_minutes > 0:
        since_minutes = (
            inp.market_snapshot.timestamp - last_trade.timestamp
        ).total_seconds() / 60
        if since_minutes < trade_control.cooldown_minutes:
            remaining = trade_control.cooldown_minutes - since_minutes
            return _reject(
                "cooldown",
                f"Cooldown active: {remaining:.1f} min remaining of {trade_control.cooldown_minutes:g}",
            )

    side = entry_side(intent.bias)
    if (
        last_trade is not None
        and not trade_control.allow_reentry_same_direction
        and last_trade.side == side
    ):
        return _reject("reentry", f"Re-entry in same direction ({intent.bias}) not allowed")

    if not config.entry_exit.entry.behaviors.any_enabled():
        return _reject("behaviors", "No entry behaviors enabled")

    if inp.account.equity <= 0:
        return _reject("risk", "Account equity is zero or negative")

    return EntryEvaluation(can_enter=True, reason="All entry checks passed")
