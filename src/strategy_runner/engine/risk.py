"""Risk evaluator: independent limit checks on an already-sized order."""

from __future__ import annotations

from strategy_runner.models.account import AccountSnapshot
from strategy_runner.models.decision import OrderIntent, RiskCheck, RiskResult
from strategy_runner.models.strategy import RiskLimits

# Mandatory cap when the strategy leaves max_position_usd unset
DEFAULT_MAX_POSITION_USD = 100.0


class RiskEvaluator:
    """Runs every limit check and reports each one.

    Checks are not short-circuited so an operator sees every violated limit.
    """

    def __init__(self, default_max_position_usd: float = DEFAULT_MAX_POSITION_USD) -> None:
        self.default_max_position_usd = default_max_position_usd

    def evaluate(
        self,
        order: OrderIntent,
        account: AccountSnapshot,
        limits: RiskLimits,
        gross_exposure_usd: float,
    ) -> RiskResult:
        if order.notional_usd <= 0:
            noop = RiskCheck(passed=False, rule="noop", reason="No-op order (size=0)")
            return RiskResult(passed=False, reason=noop.reason, checks=(noop,))

        checks = [self._check_max_position(order, limits)]
        if limits.max_leverage is not None:
            checks.append(self._check_max_leverage(account, limits.max_leverage, gross_exposure_usd))
        if limits.max_daily_loss_pct is not None and account.starting_equity > 0:
            checks.append(self._check_daily_loss(account, limits.max_daily_loss_pct))

        failures = [c for c in checks if not c.passed]
        return RiskResult(
            passed=not failures,
            reason="; ".join(c.reason for c in failures) or None,
            checks=tuple(checks),
        )

    def _check_max_position(self, order: OrderIntent, limits: RiskLimits) -> RiskCheck:
        max_pos = (
            limits.max_position_usd
            if limits.max_position_usd is not None
            else self.default_max_position_usd
        )
        if order.notional_usd > max_pos:
            return RiskCheck(
                passed=False,
                rule="max_position_usd",
                reason=f"Order notional ${order.notional_usd:.2f} exceeds max ${max_pos:g}",
            )
        return RiskCheck(passed=True, rule="max_position_usd")

    def _check_max_leverage(
        self, account: AccountSnapshot, max_leverage: float, gross_exposure_usd: float
    ) -> RiskCheck:
        leverage = gross_exposure_usd / account.equity if account.equity > 0 else float("inf")
        if leverage > max_leverage:
            return RiskCheck(
                passed=False,
                rule="max_leverage",
                reason=f"Leverage {leverage:.2f}x exceeds max {max_leverage:g}x",
            )
        return RiskCheck(passed=True, rule="max_leverage")

    def _check_daily_loss(self, account: AccountSnapshot, max_daily_loss_pct: float) -> RiskCheck:
        max_loss = abs(max_daily_loss_pct) / 100
        loss = (account.starting_equity - account.equity) / account.starting_equity
        if loss > max_loss:
            return RiskCheck(
                passed=False,
                rule="max_daily_loss_pct",
                reason=f"Loss {loss * 100:.2f}% exceeds max {max_loss * 100:.2f}%",
            )
        return RiskCheck(passed=True, rule="max_daily_loss_pct")
