"""Broker capability interface.

One implementation per mode (virtual simulation, live routing). The
orchestrator picks the implementation once per tick and never branches on
mode afterwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from strategy_runner.models.account import EngineAccountState
from strategy_runner.models.order import BrokerContext, ExecutionResult, OrderRequest
from strategy_runner.venues import VenueDescriptor


class Broker(ABC):
    mode: str = ""
    live: bool = False

    def __init__(self, venue: VenueDescriptor) -> None:
        self.venue = venue

    @abstractmethod
    async def place_order(self, ctx: BrokerContext, request: OrderRequest) -> ExecutionResult:
        """Execute (or route) one order. Must not raise: failures come back as status=failed."""

    @abstractmethod
    async def get_account_state(self, ctx: BrokerContext) -> EngineAccountState:
        ...

    async def on_tick(self, ctx: BrokerContext) -> None:
        """Per-tick hook, called whether or not an order fires."""
        return None

    def precheck(self, request: OrderRequest) -> ExecutionResult | None:
        """Venue constraints every adapter enforces before touching state."""
        if request.size <= 0:
            return ExecutionResult(status="skipped", error="Order size must be positive")
        if request.side == "sell" and not request.reduce_only and not self.venue.allows_short:
            return ExecutionResult(status="skipped", error=self.venue.short_rejection_message())
        if (
            not request.reduce_only
            and self.venue.min_order_usd
            and request.notional_usd < self.venue.min_order_usd
        ):
            return ExecutionResult(
                status="skipped",
                error=(
                    f"Order notional ${request.notional_usd:.2f} below "
                    f"{self.venue.display_name} minimum ${self.venue.min_order_usd:.2f}"
                ),
            )
        return None
