"""Broker selection: one implementation per (mode, venue)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from strategy_runner.brokers.base import Broker
from strategy_runner.brokers.live import LiveBroker
from strategy_runner.brokers.virtual import VirtualBroker
from strategy_runner.errors import ConfigurationError
from strategy_runner.venues import get_venue

if TYPE_CHECKING:
    from strategy_runner.config import Settings
    from strategy_runner.db.repository import (
        AccountRepository,
        PositionRepository,
        VirtualTradeRepository,
    )
    from strategy_runner.models.records import SessionRecord
    from strategy_runner.redis_client import RedisClient


class BrokerRegistry:
    def __init__(
        self,
        settings: Settings,
        accounts: AccountRepository,
        positions: PositionRepository,
        trades: VirtualTradeRepository,
        redis: RedisClient | None = None,
    ) -> None:
        self.settings = settings
        self.accounts = accounts
        self.positions = positions
        self.trades = trades
        self.redis = redis
        self._cache: dict[tuple[str, str], Broker] = {}

    def for_session(self, session: SessionRecord) -> Broker:
        venue = get_venue(session.venue)
        key = (session.mode, venue.name)
        broker = self._cache.get(key)
        if broker is None:
            broker = self._build(session.mode, venue)
            self._cache[key] = broker
        return broker

    def _build(self, mode, venue) -> Broker:
        if mode == "virtual":
            return VirtualBroker(
                venue,
                self.accounts,
                self.positions,
                self.trades,
                slippage_bps=self.settings.VIRTUAL_SLIPPAGE_BPS,
                fee_bps=self.settings.VIRTUAL_FEE_BPS,
            )
        if mode == "live":
            if self.redis is None:
                raise ConfigurationError("Live sessions require a Redis connection")
            return LiveBroker(
                venue,
                self.redis,
                self.positions,
                order_stream=self.settings.LIVE_ORDER_STREAM,
                fill_stream=self.settings.LIVE_FILL_STREAM,
                position_stream=self.settings.LIVE_POSITION_STREAM,
                account_stream=self.settings.LIVE_ACCOUNT_STREAM,
            )
        raise ConfigurationError(f"Unknown session mode: {mode}")
