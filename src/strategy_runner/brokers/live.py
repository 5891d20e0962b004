"""Live broker: routes orders to the venue gateway over Redis Streams.

The gateway owns exchange credentials and wire formats. This side publishes
an order on ``trade:orders`` and reads fills, positions and account state the
gateway publishes back. Positions and account state are per account:
``trade:positions:<account_id>`` and ``trade:account:<account_id>``, and a
message is only trusted when its payload names the same ``account_id``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from strategy_runner.brokers.base import Broker
from strategy_runner.errors import BrokerError
from strategy_runner.models.account import EngineAccountState, SpotBalance
from strategy_runner.models.messages import LiveOrderMessage, StreamMessage
from strategy_runner.models.order import BrokerContext, ExecutionResult, OrderRequest

if TYPE_CHECKING:
    from strategy_runner.db.repository import PositionRepository
    from strategy_runner.redis_client import RedisClient
    from strategy_runner.venues import VenueDescriptor

logger = structlog.get_logger()

STABLE_ASSETS = frozenset({"USD", "USDC", "USDT"})


class LiveBroker(Broker):
    mode = "live"
    live = True

    def __init__(
        self,
        venue: VenueDescriptor,
        redis: RedisClient,
        positions: PositionRepository,
        order_stream: str = "trade:orders",
        fill_stream: str = "trade:fills",
        position_stream: str = "trade:positions",
        account_stream: str = "trade:account",
    ) -> None:
        super().__init__(venue)
        self.redis = redis
        self.positions = positions
        self.order_stream = order_stream
        self.fill_stream = fill_stream
        self.position_stream = position_stream
        self.account_stream = account_stream

    async def place_order(self, ctx: BrokerContext, request: OrderRequest) -> ExecutionResult:
        rejected = self.precheck(request)
        if rejected is not None:
            return rejected

        message = LiveOrderMessage(
            payload={
                "venue": self.venue.name,
                "user_id": ctx.user_id,
                "account_id": ctx.account_id,
                "session_id": ctx.session_id,
                "client_order_id": request.client_order_id,
                "market": request.market,
                "side": request.side,
                "size": request.size,
                "notional_usd": request.notional_usd,
                "order_type": request.order_type,
                "reduce_only": request.reduce_only,
            }
        )
        try:
            entry_id = await self.redis.publish(self.order_stream, message)
        except Exception as e:
            logger.exception(
                "live_order_publish_error",
                session_id=ctx.session_id,
                client_order_id=request.client_order_id,
            )
            return ExecutionResult(
                status="failed",
                error=str(e),
                venue_response={"venue": self.venue.name, "error": str(e)},
            )

        logger.info(
            "live_order_sent",
            session_id=ctx.session_id,
            venue=self.venue.name,
            client_order_id=request.client_order_id,
            stream_id=entry_id,
        )

        fill = await self._find_fill(request.client_order_id)
        if fill is None:
            return ExecutionResult(
                status="sent",
                venue_response={"stream_id": entry_id, "msg_id": message.msg_id},
            )
        if fill.get("status") == "rejected":
            return ExecutionResult(
                status="failed",
                error=fill.get("error") or "Rejected by venue",
                venue_response=fill,
            )
        return ExecutionResult(
            status="filled",
            filled_price=fill.get("fill_price"),
            filled_size=fill.get("fill_size"),
            fee_usd=fill.get("fee_usd"),
            venue_response=fill,
        )

    async def _find_fill(self, client_order_id: str) -> dict | None:
        """Gateway acknowledgement for ``client_order_id`` if already published."""
        try:
            messages = await self.redis.read_recent(self.fill_stream, count=50)
        except Exception:
            logger.warning("live_fill_lookup_failed", client_order_id=client_order_id)
            return None
        for msg in messages:
            if msg.payload.get("client_order_id") == client_order_id:
                return msg.payload
        return None

    async def _latest_for_account(self, stream: str, ctx: BrokerContext) -> StreamMessage | None:
        """Newest message on the account's own stream, or None if absent or for another account."""
        msg = await self.redis.read_latest(f"{stream}:{ctx.account_id}")
        if msg is None:
            return None
        owner = msg.payload.get("account_id")
        if owner != ctx.account_id:
            logger.warning(
                "live_foreign_account_message",
                stream=stream,
                account_id=ctx.account_id,
                message_account_id=owner,
            )
            return None
        return msg

    async def get_account_state(self, ctx: BrokerContext) -> EngineAccountState:
        msg = await self._latest_for_account(self.account_stream, ctx)
        if msg is None:
            raise BrokerError(
                f"No account state published for {ctx.account_id} on {self.venue.display_name}"
            )
        payload = msg.payload

        balances = payload.get("balances")
        if balances is not None:
            return self._spot_account_state(balances)

        return EngineAccountState(
            equity_usd=float(payload.get("equity", 0)),
            cash_usd=float(payload.get("cash", 0)),
            net_exposure_usd=float(payload.get("net_exposure", 0)),
            gross_exposure_usd=float(payload.get("gross_exposure", 0)),
        )

    def _spot_account_state(self, balances: list[dict]) -> EngineAccountState:
        """Spot venues: equity is the USD value of all balances, non-cash assets are exposure."""
        spot = [SpotBalance.model_validate(b) for b in balances]
        equity = sum(b.usd_value for b in spot)
        cash = sum(b.usd_value for b in spot if b.asset.upper() in STABLE_ASSETS)
        exposure = equity - cash
        return EngineAccountState(
            equity_usd=equity,
            cash_usd=cash,
            net_exposure_usd=exposure,
            gross_exposure_usd=exposure,
            spot_balances=spot,
        )

    async def on_tick(self, ctx: BrokerContext) -> None:
        """Mirror the venue-reported positions for this market into the positions table."""
        msg = await self._latest_for_account(self.position_stream, ctx)
        if msg is None:
            return

        # The gateway does not track peaks or open times; keep ours per side
        known = {
            p.side: p
            for p in await self.positions.list_for_account(ctx.account_id)
            if p.market == ctx.market
        }
        rows = []
        for p in msg.payload.get("positions", []):
            if p.get("market") != ctx.market or float(p.get("size", 0)) == 0:
                continue
            size = float(p["size"])
            side = p.get("side") or ("long" if size > 0 else "short")
            prior = known.get(side)
            if p.get("opened_at"):
                opened_at = datetime.fromisoformat(p["opened_at"])
            elif prior is not None and prior.opened_at is not None:
                opened_at = prior.opened_at
            else:
                opened_at = msg.timestamp
            rows.append(
                {
                    "side": side,
                    "size": abs(size),
                    "avg_entry": float(p.get("avg_entry", 0)),
                    "unrealized_pnl": float(p.get("unrealized_pnl", 0)),
                    "peak_price": prior.peak_price if prior is not None else None,
                    "opened_at": opened_at,
                }
            )
        await self.positions.replace_for_market(ctx.account_id, ctx.market, rows)
