"""Parity harness: identical inputs must produce identical decisions.

Builds deterministic synthetic inputs, evaluates them once for the virtual
route and once for the live route, and diffs the two decisions. Execution
routing is not exercised here, only the decision logic both routes share.

    result = run_parity_test(default_strategy_config(), "Long entry", bias="long", confidence=0.8)
    assert result.passed, result.diffs
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from strategy_runner.engine.strategy_engine import compare_decisions, evaluate_strategy
from strategy_runner.models.account import AccountSnapshot, PositionSnapshot
from strategy_runner.models.decision import DecisionDiff, StrategyDecision, StrategyEngineInput
from strategy_runner.models.intent import AIIntent, EntryZone
from strategy_runner.models.market import (
    ATRValue,
    EMAPair,
    EMAValue,
    IndicatorsSnapshot,
    MarketSnapshot,
    RSIValue,
)
from strategy_runner.models.strategy import (
    ConfidenceControl,
    EntryExitConfig,
    ExitConfig,
    Guardrails,
    RiskLimits,
    SignalExit,
    StrategyConfig,
    TimeExit,
    TpSlExit,
    TradeControl,
    TrailingExit,
)
from strategy_runner.venues import get_venue

REFERENCE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class ParityTestResult(BaseModel):
    test_name: str
    passed: bool
    virtual_decision: StrategyDecision
    live_decision: StrategyDecision
    diffs: list[DecisionDiff] = []


class ParitySuiteResult(BaseModel):
    passed: bool
    total_tests: int
    passed_tests: int
    failed_tests: int
    results: list[ParityTestResult]


# ---------------------------------------------------------------------------
# Fixture builders
# ---------------------------------------------------------------------------


def create_test_snapshot(market: str = "BTC-PERP", price: float = 50000.0) -> MarketSnapshot:
    return MarketSnapshot(
        market=market,
        price=price,
        bid=price * 0.9999,
        ask=price * 1.0001,
        mid=price,
        timestamp=REFERENCE_TIME,
    )


def create_test_position(
    market: str = "BTC-PERP",
    side: str = "long",
    entry: float = 49000.0,
    size: float = 0.1,
    price: float = 50000.0,
    age_minutes: float = 60.0,
) -> PositionSnapshot:
    pnl = (price - entry) * size if side == "long" else (entry - price) * size
    return PositionSnapshot(
        market=market,
        side=side,
        size=size,
        avg_entry=entry,
        unrealized_pnl=pnl,
        opened_at=REFERENCE_TIME - timedelta(minutes=age_minutes),
    )


def create_test_account(equity: float = 100000.0, starting_equity: float | None = None) -> AccountSnapshot:
    return AccountSnapshot(
        equity=equity,
        cash_balance=equity,
        starting_equity=starting_equity if starting_equity is not None else equity,
    )


def create_test_intent(bias: str = "long", confidence: float = 0.75) -> AIIntent:
    return AIIntent(
        bias=bias,
        confidence=confidence,
        entry_zone=EntryZone(lower=49500, upper=50500),
        stop_loss=48000,
        take_profit=55000,
        risk=0.02,
        reasoning="Synthetic parity intent",
    )


def create_test_indicators() -> IndicatorsSnapshot:
    return IndicatorsSnapshot(
        rsi=RSIValue(value=55, period=14),
        atr=ATRValue(value=500, period=14),
        volatility=0.02,
        ema=EMAPair(fast=EMAValue(value=50100, period=9), slow=EMAValue(value=49900, period=21)),
    )


def default_strategy_config(exit: ExitConfig | None = None) -> StrategyConfig:
    return StrategyConfig(
        guardrails=Guardrails(min_confidence=0.65, allow_long=True, allow_short=True),
        entry_exit=EntryExitConfig(
            exit=exit or SignalExit(max_loss_protection_pct=10),
            trade_control=TradeControl(
                max_trades_per_hour=2,
                max_trades_per_day=10,
                cooldown_minutes=15,
                min_hold_minutes=5,
                allow_reentry_same_direction=False,
            ),
            confidence_control=ConfidenceControl(min_confidence=0.65, confidence_scaling=True),
        ),
        risk=RiskLimits(max_daily_loss_pct=5, max_position_usd=10000, max_leverage=2),
    )


def build_test_input(
    config: StrategyConfig,
    *,
    has_position: bool = False,
    position_side: str = "long",
    position_entry: float = 49000.0,
    position_age_minutes: float = 60.0,
    price: float = 50000.0,
    market: str = "BTC-PERP",
    bias: str = "long",
    confidence: float = 0.75,
    equity: float = 100000.0,
    venue: str = "hyperliquid",
    peak_price: float | None = None,
) -> StrategyEngineInput:
    position = (
        create_test_position(market, position_side, position_entry, price=price, age_minutes=position_age_minutes)
        if has_position
        else None
    )
    return StrategyEngineInput(
        market=market,
        market_snapshot=create_test_snapshot(market, price),
        positions=(position,) if position else (),
        current_position=position,
        account=create_test_account(equity),
        ai_intent=create_test_intent(bias, confidence),
        indicators=create_test_indicators(),
        config=config,
        venue=get_venue(venue),
        position_age_minutes=position_age_minutes if has_position else None,
        peak_price=peak_price,
    )


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------


def run_parity_test(
    config: StrategyConfig,
    test_name: str = "Default Parity Test",
    **options,
) -> ParityTestResult:
    return run_parity_input(build_test_input(config, **options), test_name)


def run_parity_input(inp: StrategyEngineInput, test_name: str) -> ParityTestResult:
    """Evaluate independent copies of ``inp`` for each route and diff them."""
    virtual_decision = evaluate_strategy(inp.model_copy(deep=True))
    live_decision = evaluate_strategy(inp.model_copy(deep=True))
    diffs = compare_decisions(virtual_decision, live_decision)
    return ParityTestResult(
        test_name=test_name,
        passed=not diffs,
        virtual_decision=virtual_decision,
        live_decision=live_decision,
        diffs=diffs,
    )


def run_parity_suite() -> ParitySuiteResult:
    config = default_strategy_config()
    tp_sl = default_strategy_config(TpSlExit(take_profit_pct=2, stop_loss_pct=2))
    trailing = default_strategy_config(TrailingExit(trailing_stop_pct=3, initial_stop_loss_pct=5))
    timed = default_strategy_config(TimeExit(max_hold_minutes=30))

    results = [
        run_parity_test(config, "Basic Long Entry", bias="long", confidence=0.8),
        run_parity_test(config, "Basic Short Entry", bias="short", confidence=0.75),
        run_parity_test(config, "Neutral Intent - No Trade", bias="neutral", confidence=0.9),
        run_parity_test(config, "Low Confidence Rejection", bias="long", confidence=0.3),
        run_parity_test(
            config,
            "AI Signal Exit - Long to Short",
            has_position=True,
            position_side="long",
            position_entry=49000,
            bias="short",
            confidence=0.8,
        ),
        run_parity_test(
            config,
            "AI Signal Exit - Short to Long",
            has_position=True,
            position_side="short",
            position_entry=51000,
            bias="long",
            confidence=0.8,
        ),
        run_parity_test(
            config, "Hold Position - Neutral Signal", has_position=True, bias="neutral", confidence=0.7
        ),
        run_parity_test(
            config, "Hold Position - Same Direction", has_position=True, bias="long", confidence=0.8
        ),
        run_parity_test(
            tp_sl,
            "TP/SL Mode - Take Profit Trigger",
            has_position=True,
            position_entry=49000,
            bias="neutral",
            confidence=0.5,
        ),
        run_parity_test(
            tp_sl,
            "TP/SL Mode - Stop Loss Trigger",
            has_position=True,
            position_entry=51500,
            bias="neutral",
            confidence=0.5,
        ),
        run_parity_test(
            config, "Spot Venue - Short Rejected", venue="coinbase", bias="short", confidence=0.9
        ),
        run_parity_test(
            trailing,
            "Trailing Mode - Retrace From Peak",
            has_position=True,
            position_entry=49000,
            peak_price=52000,
            bias="long",
            confidence=0.8,
        ),
        run_parity_test(
            timed, "Time Mode - Max Hold Reached", has_position=True, bias="long", confidence=0.8
        ),
    ]

    passed_tests = sum(1 for r in results if r.passed)
    return ParitySuiteResult(
        passed=passed_tests == len(results),
        total_tests=len(results),
        passed_tests=passed_tests,
        failed_tests=len(results) - passed_tests,
        results=results,
    )


def format_parity_results(suite: ParitySuiteResult) -> str:
    lines = [
        "PARITY TEST RESULTS",
        f"Total: {suite.total_tests}  Passed: {suite.passed_tests}  Failed: {suite.failed_tests}",
        "",
    ]
    for r in suite.results:
        mark = "PASS" if r.passed else "FAIL"
        lines.append(f"[{mark}] {r.test_name}")
        lines.append(f"    action={r.virtual_decision.action}  {r.virtual_decision.action_summary}")
        for d in r.diffs:
            lines.append(f"    diff {d.field}: virtual={d.a} live={d.b}")
    lines.append("")
    lines.append("ALL TESTS PASSED" if suite.passed else "SOME TESTS FAILED")
    return "\n".join(lines)


def main() -> None:
    suite = run_parity_suite()
    print(format_parity_results(suite))
    raise SystemExit(0 if suite.passed else 1)


if __name__ == "__main__":
    main()
