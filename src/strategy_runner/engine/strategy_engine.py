"""Decision engine: one pure evaluation per tick.

Takes a fully resolved StrategyEngineInput and returns a StrategyDecision.
No I/O, no mode flag, no clock reads beyond stamping the output. Virtual and
live sessions therefore decide identically on identical inputs.
"""

from __future__ import annotations

from datetime import datetime, timezone

from strategy_runner.engine.entry_rules import entry_side, evaluate_entry
from strategy_runner.engine.exit_rules import evaluate_exit
from strategy_runner.engine.risk import DEFAULT_MAX_POSITION_USD, RiskEvaluator
from strategy_runner.engine.sizing import gross_exposure, size_entry
from strategy_runner.models.account import PositionSnapshot
from strategy_runner.models.decision import (
    DecisionDiff,
    ExitEvaluation,
    FilterCheck,
    FilterResults,
    OrderIntent,
    RiskResult,
    StrategyDecision,
    StrategyEngineInput,
)

# Exits that fire even while the position is younger than min_hold_minutes
MIN_HOLD_BYPASS = frozenset({"max_loss_protection", "max_profit_cap", "time_stop"})

_FILTER_FOR_CHECK = {
    "position": "position",
    "venue_constraint": "venue",
    "confidence": "confidence",
    "guardrails": "guardrails",
    "intent": "intent",
    "frequency": "trade_control",
    "cooldown": "trade_control",
    "reentry": "trade_control",
    "behaviors": "behaviors",
    "risk": "risk",
}

_NOT_EVALUATED = RiskResult(passed=True, reason=None, checks=())


def evaluate_strategy(
    inp: StrategyEngineInput,
    *,
    default_max_position_usd: float = DEFAULT_MAX_POSITION_USD,
    now: datetime | None = None,
) -> StrategyDecision:
    timestamp = now or datetime.now(timezone.utc)
    position = inp.current_position

    if position is not None:
        exit_eval = evaluate_exit(
            position,
            inp.market_snapshot.price,
            inp.config.entry_exit.exit,
            inp.ai_intent,
            peak_price=inp.peak_price,
            position_age_minutes=inp.position_age_minutes,
        )
        if exit_eval.should_exit:
            return _exit_decision(inp, position, exit_eval, timestamp)

    entry = evaluate_entry(inp)
    if not entry.can_enter:
        return _skip(
            inp,
            timestamp,
            entry.reason,
            filters=_failed_filter(_FILTER_FOR_CHECK.get(entry.failed_check or "", "intent"), entry.reason),
        )

    notional = size_entry(inp, default_max_position_usd)
    bias = inp.ai_intent.bias
    reasoning = inp.ai_intent.reasoning
    order = OrderIntent(
        market=inp.market,
        side=entry_side(bias),
        notional_usd=notional,
        type="entry",
        reason=f"{bias} entry: {reasoning}" if reasoning else f"{bias} entry",
    )

    risk = RiskEvaluator(default_max_position_usd).evaluate(
        order,
        inp.account,
        inp.config.risk,
        gross_exposure(inp.account, inp.positions),
    )
    if not risk.passed:
        reason = f"Risk check failed: {risk.reason}"
        return _skip(inp, timestamp, reason, risk=risk, filters=_failed_filter("risk", reason))

    return StrategyDecision(
        timestamp=timestamp,
        intent=inp.ai_intent,
        action="execute",
        action_summary=f"Entry {bias}: ${notional:.2f} @ ${inp.market_snapshot.price:.2f}",
        orders=(order,),
        risk_result=risk,
        filter_results=FilterResults(),
    )


def _exit_decision(
    inp: StrategyEngineInput,
    position: PositionSnapshot,
    exit_eval: ExitEvaluation,
    timestamp: datetime,
) -> StrategyDecision:
    min_hold = inp.config.entry_exit.trade_control.min_hold_minutes
    age = inp.position_age_minutes
    if exit_eval.exit_type not in MIN_HOLD_BYPASS and age is not None and age < min_hold:
        reason = f"Min hold {min_hold:g}m not reached ({age:.1f}m): {exit_eval.reason}"
        return _skip(inp, timestamp, reason, filters=_failed_filter("trade_control", reason))

    order = OrderIntent(
        market=inp.market,
        side="sell" if position.side == "long" else "buy",
        notional_usd=position.avg_entry * position.size,
        type="exit",
        reason=exit_eval.reason,
        exit_type=exit_eval.exit_type,
    )
    return StrategyDecision(
        timestamp=timestamp,
        intent=inp.ai_intent,
        action="execute",
        action_summary=f"Exit {position.side}: {exit_eval.reason}",
        orders=(order,),
        risk_result=_NOT_EVALUATED,
        filter_results=FilterResults(),
    )


def _skip(
    inp: StrategyEngineInput,
    timestamp: datetime,
    summary: str,
    *,
    filters: FilterResults,
    risk: RiskResult = _NOT_EVALUATED,
) -> StrategyDecision:
    return StrategyDecision(
        timestamp=timestamp,
        intent=inp.ai_intent,
        action="skip",
        action_summary=summary,
        orders=(),
        risk_result=risk,
        filter_results=filters,
    )


def _failed_filter(name: str, reason: str) -> FilterResults:
    return FilterResults(**{name: FilterCheck(passed=False, reason=reason)})


# ---------------------------------------------------------------------------
# Decision comparison
# ---------------------------------------------------------------------------

CONFIDENCE_TOLERANCE = 0.001
NOTIONAL_TOLERANCE = 0.01


def compare_decisions(a: StrategyDecision, b: StrategyDecision) -> list[DecisionDiff]:
    """Field-level differences between two decisions, ignoring the timestamp."""
    diffs: list[DecisionDiff] = []

    def diff(field: str, x: object, y: object) -> None:
        diffs.append(DecisionDiff(field=field, a=str(x), b=str(y)))

    if a.action != b.action:
        diff("action", a.action, b.action)
    if a.action_summary != b.action_summary:
        diff("action_summary", a.action_summary, b.action_summary)
    if a.intent.bias != b.intent.bias:
        diff("intent.bias", a.intent.bias, b.intent.bias)
    if abs(a.intent.confidence - b.intent.confidence) > CONFIDENCE_TOLERANCE:
        diff("intent.confidence", a.intent.confidence, b.intent.confidence)

    if len(a.orders) != len(b.orders):
        diff("orders.length", len(a.orders), len(b.orders))
    else:
        for i, (oa, ob) in enumerate(zip(a.orders, b.orders)):
            if oa.side != ob.side:
                diff(f"orders[{i}].side", oa.side, ob.side)
            if abs(oa.notional_usd - ob.notional_usd) > NOTIONAL_TOLERANCE:
                diff(f"orders[{i}].notional_usd", oa.notional_usd, ob.notional_usd)
            if oa.type != ob.type:
                diff(f"orders[{i}].type", oa.type, ob.type)

    if a.risk_result.passed != b.risk_result.passed:
        diff("risk_result.passed", a.risk_result.passed, b.risk_result.passed)

    if not diffs and canonical_payload(a) != canonical_payload(b):
        diff("payload", canonical_payload(a), canonical_payload(b))
    return diffs


def canonical_payload(decision: StrategyDecision) -> str:
    return decision.model_dump_json(exclude={"timestamp"})
