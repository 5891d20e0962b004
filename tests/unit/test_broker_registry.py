"""Unit tests for BrokerRegistry — implementation picked by (mode, venue)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import make_session
from strategy_runner.brokers.live import LiveBroker
from strategy_runner.brokers.registry import BrokerRegistry
from strategy_runner.brokers.virtual import VirtualBroker
from strategy_runner.errors import ConfigurationError


@pytest.fixture
def registry(settings):
    return BrokerRegistry(settings, AsyncMock(), AsyncMock(), AsyncMock(), redis=AsyncMock())


class TestBrokerRegistry:
    def test_virtual_session(self, registry, settings):
        broker = registry.for_session(make_session(mode="virtual"))
        assert isinstance(broker, VirtualBroker)
        assert broker.live is False
        assert broker.fee_bps == settings.VIRTUAL_FEE_BPS

    def test_live_session(self, registry):
        broker = registry.for_session(make_session(mode="live", venue="coinbase"))
        assert isinstance(broker, LiveBroker)
        assert broker.live is True
        assert broker.venue.name == "coinbase"

    def test_cached_per_mode_and_venue(self, registry):
        a = registry.for_session(make_session(id="a"))
        b = registry.for_session(make_session(id="b"))
        c = registry.for_session(make_session(id="c", venue="coinbase"))
        assert a is b
        assert a is not c

    def test_live_without_redis(self, settings):
        registry = BrokerRegistry(settings, AsyncMock(), AsyncMock(), AsyncMock())
        with pytest.raises(ConfigurationError):
            registry.for_session(make_session(mode="live"))

    def test_unknown_mode(self, registry):
        with pytest.raises(ConfigurationError):
            registry.for_session(make_session(mode="paper"))

    def test_unknown_venue(self, registry):
        with pytest.raises(ConfigurationError):
            registry.for_session(make_session(venue="binance"))
