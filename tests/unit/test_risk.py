"""Unit tests for the risk evaluator."""

from __future__ import annotations

from strategy_runner.engine.risk import DEFAULT_MAX_POSITION_USD, RiskEvaluator
from strategy_runner.models.account import AccountSnapshot
from strategy_runner.models.decision import OrderIntent
from strategy_runner.models.strategy import RiskLimits


def _order(notional: float) -> OrderIntent:
    return OrderIntent(market="BTC-PERP", side="buy", notional_usd=notional, type="entry", reason="test")


def _account(equity: float = 10000, starting: float = 10000) -> AccountSnapshot:
    return AccountSnapshot(equity=equity, cash_balance=equity, starting_equity=starting)


class TestRiskEvaluator:
    def test_noop_order_rejected(self):
        result = RiskEvaluator().evaluate(_order(0), _account(), RiskLimits(), 0)
        assert result.passed is False
        assert result.checks[0].rule == "noop"

    def test_within_all_limits(self):
        limits = RiskLimits(max_position_usd=1000, max_leverage=2, max_daily_loss_pct=5)
        result = RiskEvaluator().evaluate(_order(500), _account(), limits, 1000)
        assert result.passed is True
        assert result.reason is None
        assert [c.rule for c in result.checks] == [
            "max_position_usd",
            "max_leverage",
            "max_daily_loss_pct",
        ]

    def test_default_cap_applies_when_unset(self):
        result = RiskEvaluator().evaluate(_order(DEFAULT_MAX_POSITION_USD + 1), _account(), RiskLimits(), 0)
        assert result.passed is False
        assert result.failures[0].rule == "max_position_usd"

    def test_custom_default_cap(self):
        result = RiskEvaluator(default_max_position_usd=500).evaluate(_order(400), _account(), RiskLimits(), 0)
        assert result.passed is True

    def test_leverage_exceeded(self):
        limits = RiskLimits(max_position_usd=1000, max_leverage=2)
        result = RiskEvaluator().evaluate(_order(100), _account(equity=10000), limits, 25000)
        assert result.passed is False
        assert "Leverage 2.50x" in result.reason

    def test_zero_equity_is_infinite_leverage(self):
        limits = RiskLimits(max_position_usd=1000, max_leverage=2)
        result = RiskEvaluator().evaluate(_order(100), _account(equity=0), limits, 0)
        assert result.passed is False
        assert "inf" in result.failures[0].reason

    def test_daily_loss_in_percent_units(self):
        """6% down against a 5% limit fails; 4% down passes."""
        limits = RiskLimits(max_position_usd=1000, max_daily_loss_pct=5)
        failed = RiskEvaluator().evaluate(_order(100), _account(equity=9400), limits, 0)
        ok = RiskEvaluator().evaluate(_order(100), _account(equity=9600), limits, 0)
        assert failed.passed is False
        assert failed.failures[0].rule == "max_daily_loss_pct"
        assert ok.passed is True

    def test_daily_loss_skipped_without_starting_equity(self):
        limits = RiskLimits(max_position_usd=1000, max_daily_loss_pct=5)
        result = RiskEvaluator().evaluate(_order(100), _account(equity=10, starting=0), limits, 0)
        assert [c.rule for c in result.checks] == ["max_position_usd"]

    def test_reports_every_violation(self):
        limits = RiskLimits(max_position_usd=100, max_leverage=1, max_daily_loss_pct=1)
        result = RiskEvaluator().evaluate(_order(500), _account(equity=5000), limits, 20000)
        assert len(result.failures) == 3
        assert result.reason.count(";") == 2
