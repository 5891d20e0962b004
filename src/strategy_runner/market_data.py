"""Market data feed boundary, normalized to MarketSnapshot."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from strategy_runner.errors import MarketDataError
from strategy_runner.models.market import MarketSnapshot, MarkPrice, OrderbookTop
from strategy_runner.redis_client import RedisClient

logger = structlog.get_logger()


class MarketDataFeed(Protocol):
    async def get_orderbook_top(self, market: str) -> OrderbookTop: ...

    async def get_mark_price(self, market: str) -> MarkPrice: ...


class RedisMarketDataFeed:
    """Reads the latest prices the market feed publishes per market.

    Streams: ``market:orderbook:<market>`` and ``market:prices:<market>``.
    """

    def __init__(self, redis: RedisClient) -> None:
        self.redis = redis

    async def get_orderbook_top(self, market: str) -> OrderbookTop:
        msg = await self.redis.read_latest(f"market:orderbook:{market}")
        if msg is None:
            raise MarketDataError(f"No orderbook published for {market}")
        bid = float(msg.payload["bid"])
        ask = float(msg.payload["ask"])
        mid = float(msg.payload.get("mid") or (bid + ask) / 2)
        return OrderbookTop(bid=bid, ask=ask, mid=mid)

    async def get_mark_price(self, market: str) -> MarkPrice:
        msg = await self.redis.read_latest(f"market:prices:{market}")
        if msg is None:
            raise MarketDataError(f"No mark price published for {market}")
        return MarkPrice(price=float(msg.payload["price"]), timestamp=msg.timestamp)


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
async def fetch_market_snapshot(feed: MarketDataFeed, market: str) -> MarketSnapshot:
    """Orderbook top and mark price fetched together, then normalized."""
    top, mark = await asyncio.gather(feed.get_orderbook_top(market), feed.get_mark_price(market))

    price = mark.price if mark.price > 0 else top.mid
    if price <= 0:
        raise MarketDataError(f"No usable price for {market}")
    mid = top.mid if top.mid > 0 else price

    logger.debug("market_snapshot", market=market, price=price, bid=top.bid, ask=top.ask)
    return MarketSnapshot(
        market=market,
        price=price,
        bid=top.bid,
        ask=top.ask,
        mid=mid,
        timestamp=mark.timestamp,
    )
