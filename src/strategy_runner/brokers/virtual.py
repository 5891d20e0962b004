"""Virtual broker: simulated fills against a cash-settled margin account.

Accounting model:
- cash_balance is collateral; opening a position only deducts the fee
- unrealized PnL is pure price movement (no fees)
- closing adds realized PnL to cash and deducts the closing fee
- equity = cash_balance + sum(unrealized PnL)
- opposite-side orders close or reduce, they never flip a position
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from strategy_runner.brokers.base import Broker
from strategy_runner.errors import BrokerError
from strategy_runner.models.account import EngineAccountState
from strategy_runner.models.order import BrokerContext, ExecutionResult, OrderRequest

if TYPE_CHECKING:
    from strategy_runner.db.repository import (
        AccountRepository,
        PositionRepository,
        VirtualTradeRepository,
    )
    from strategy_runner.models.records import PositionRecord
    from strategy_runner.venues import VenueDescriptor

logger = structlog.get_logger()

# Close orders within this fraction of the position snap to the full size
CLOSE_SNAP_PCT = 0.05
EPSILON = 1e-8


def _unrealized(position: PositionRecord, price: float) -> float:
    if position.side == "long":
        return (price - position.avg_entry) * position.size
    return (position.avg_entry - price) * position.size


class VirtualBroker(Broker):
    mode = "virtual"
    live = False

    def __init__(
        self,
        venue: VenueDescriptor,
        accounts: AccountRepository,
        positions: PositionRepository,
        trades: VirtualTradeRepository,
        slippage_bps: float = 5.0,
        fee_bps: float = 5.0,
    ) -> None:
        super().__init__(venue)
        self.accounts = accounts
        self.positions = positions
        self.trades = trades
        self.slippage_bps = slippage_bps
        self.fee_bps = fee_bps

    async def get_account_state(self, ctx: BrokerContext) -> EngineAccountState:
        account = await self.accounts.get(ctx.account_id)
        if account is None:
            raise BrokerError(f"Account not found: {ctx.account_id}")
        positions = await self.positions.list_for_account(ctx.account_id)

        unrealized = 0.0
        gross = 0.0
        net = 0.0
        for p in positions:
            if p.market == ctx.market and ctx.market_data.mid > 0:
                price = ctx.market_data.mid
                unrealized += _unrealized(p, price)
            else:
                price = p.avg_entry
                unrealized += p.unrealized_pnl
            notional = p.size * price
            gross += abs(notional)
            net += notional if p.side == "long" else -notional

        return EngineAccountState(
            equity_usd=account.cash_balance + unrealized,
            cash_usd=account.cash_balance,
            net_exposure_usd=net,
            gross_exposure_usd=gross,
        )

    async def on_tick(self, ctx: BrokerContext) -> None:
        if ctx.market_data.mid > 0:
            await self.mark_to_market(ctx.account_id, {ctx.market: ctx.market_data.mid})

    async def mark_to_market(self, account_id: str, prices: dict[str, float]) -> float:
        """Revalue positions and persist equity. Returns the new equity.

        Positions without a fresh price keep their last unrealized PnL.
        """
        account = await self.accounts.get(account_id)
        if account is None:
            raise BrokerError(f"Account not found: {account_id}")

        total_unrealized = 0.0
        for p in await self.positions.list_for_account(account_id):
            price = prices.get(p.market)
            if not price:
                total_unrealized += p.unrealized_pnl
                continue
            pnl = _unrealized(p, price)
            total_unrealized += pnl
            await self.positions.update(p.id, {"unrealized_pnl": pnl})

        equity = account.cash_balance + total_unrealized
        await self.accounts.update(account_id, {"equity": equity})
        logger.debug(
            "virtual_mark_to_market",
            account_id=account_id,
            cash=account.cash_balance,
            unrealized=total_unrealized,
            equity=equity,
        )
        return equity

    async def place_order(self, ctx: BrokerContext, request: OrderRequest) -> ExecutionResult:
        rejected = self.precheck(request)
        if rejected is not None:
            return rejected
        try:
            return await self._fill(ctx, request)
        except Exception as e:
            logger.exception(
                "virtual_fill_error",
                session_id=ctx.session_id,
                client_order_id=request.client_order_id,
            )
            return ExecutionResult(status="failed", error=str(e))

    async def _fill(self, ctx: BrokerContext, request: OrderRequest) -> ExecutionResult:
        mid = ctx.market_data.mid
        if mid <= 0:
            return ExecutionResult(status="failed", error="No valid mid price for fill")

        account = await self.accounts.get(ctx.account_id)
        if account is None:
            return ExecutionResult(status="failed", error=f"Account not found: {ctx.account_id}")

        direction = 1 if request.side == "buy" else -1
        fill_price = mid * (1 + direction * self.slippage_bps / 10_000)
        desired_side = "long" if request.side == "buy" else "short"

        existing = next(
            (
                p
                for p in await self.positions.list_for_account(account.id)
                if p.market == request.market
            ),
            None,
        )

        realized = 0.0
        size = request.size
        position_id = None
        if existing is None:
            if request.reduce_only:
                return ExecutionResult(status="skipped", error="No open position to reduce")
            action = "open"
            position = {
                "account_id": account.id,
                "market": request.market,
                "side": desired_side,
                "size": size,
                "avg_entry": fill_price,
                "unrealized_pnl": 0.0,
                "peak_price": fill_price,
                "opened_at": datetime.now(timezone.utc),
            }
        elif existing.side == desired_side:
            if request.reduce_only:
                return ExecutionResult(
                    status="skipped", error="Reduce-only order would increase the position"
                )
            action = "add"
            position_id = existing.id
            total = existing.size + size
            avg_entry = (existing.avg_entry * existing.size + fill_price * size) / total
            position = {"size": total, "avg_entry": avg_entry}
        else:
            position_id = existing.id
            size = min(size, existing.size)
            if size >= existing.size * (1 - CLOSE_SNAP_PCT):
                size = existing.size
            if existing.side == "long":
                realized = (fill_price - existing.avg_entry) * size
            else:
                realized = (existing.avg_entry - fill_price) * size

            remaining = existing.size - size
            if remaining < EPSILON:
                action = "close"
                position = None
            else:
                action = "reduce"
                position = {"size": remaining}

        fee = round(size * fill_price * self.fee_bps / 10_000, 6)
        cash = account.cash_balance + realized - fee
        if cash < 0:
            logger.warning("virtual_cash_clamped", account_id=account.id, cash=cash)
            cash = 0.0

        # Position, cash and trade row commit in one transaction
        await self.trades.record_fill(
            {
                "account_id": account.id,
                "session_id": ctx.session_id,
                "client_order_id": request.client_order_id,
                "market": request.market,
                "action": action,
                "side": request.side,
                "size": size,
                "price": fill_price,
                "fee_usd": fee,
                "realized_pnl_usd": realized,
            },
            cash,
            position=position,
            position_id=position_id,
        )

        try:
            await self.mark_to_market(account.id, {request.market: mid})
        except Exception:
            # The fill is committed; equity is recomputed on the next tick
            logger.exception("virtual_mark_to_market_error", account_id=account.id)

        logger.info(
            "virtual_order_filled",
            session_id=ctx.session_id,
            market=request.market,
            action=action,
            side=request.side,
            size=size,
            fill_price=fill_price,
            fee=fee,
            realized_pnl=realized,
        )
        return ExecutionResult(
            status="filled",
            filled_price=fill_price,
            filled_size=size,
            fee_usd=fee,
            realized_pnl_usd=realized,
            venue_response={
                "action": action,
                "fill_price": fill_price,
                "size": size,
                "fee_usd": fee,
                "realized_pnl_usd": realized,
            },
        )
