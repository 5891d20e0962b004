"""Unit tests for TickOrchestrator — every collaborator mocked."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_account, make_position, make_session
from strategy_runner.engine.parity import default_strategy_config
from strategy_runner.errors import ConfigurationError
from strategy_runner.models.account import EngineAccountState
from strategy_runner.models.intent import AIIntent
from strategy_runner.models.market import MarkPrice, OrderbookTop
from strategy_runner.models.order import ExecutionResult
from strategy_runner.models.records import DecisionRecord, OrderRecord, StrategyRecord
from strategy_runner.orchestrator import TickOrchestrator, TickState, advance_peak
from strategy_runner.venues import HYPERLIQUID

TS = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
TICK_ID = "tick-1"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sessions():
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=make_session())
    repo.get_status = AsyncMock(return_value="running")
    repo.acquire_tick_lock = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def strategies():
    repo = AsyncMock()
    repo.get = AsyncMock(
        return_value=StrategyRecord(
            id="strat-1",
            user_id="user-1",
            prompt="Trade BTC trends",
            model_name="claude-sonnet-4-5",
            ai_connection_id="conn-1",
            config=default_strategy_config(),
        )
    )
    return repo


@pytest.fixture
def accounts():
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=make_account())
    return repo


@pytest.fixture
def positions():
    repo = AsyncMock()
    repo.list_for_account = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def decisions():
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.create = AsyncMock(side_effect=lambda data: data["id"])
    return repo


@pytest.fixture
def orders():
    repo = AsyncMock()
    repo.get_by_decision = AsyncMock(return_value=None)
    repo.create = AsyncMock(return_value="order-1")
    repo.count_executed_since = AsyncMock(return_value=0)
    repo.recent_executed = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def broker():
    b = MagicMock()
    b.venue = HYPERLIQUID
    b.live = False
    b.on_tick = AsyncMock()
    b.get_account_state = AsyncMock(
        return_value=EngineAccountState(equity_usd=10000, cash_usd=10000, gross_exposure_usd=0)
    )
    b.place_order = AsyncMock(
        return_value=ExecutionResult(status="filled", filled_price=50025, filled_size=0.16)
    )
    return b


@pytest.fixture
def brokers(broker):
    registry = MagicMock()
    registry.for_session = MagicMock(return_value=broker)
    return registry


@pytest.fixture
def market_data():
    feed = AsyncMock()
    feed.get_orderbook_top = AsyncMock(return_value=OrderbookTop(bid=49990, ask=50010, mid=50000))
    feed.get_mark_price = AsyncMock(return_value=MarkPrice(price=50000, timestamp=TS))
    return feed


@pytest.fixture
def intent_provider():
    provider = AsyncMock()
    provider.get_intent = AsyncMock(return_value=AIIntent(bias="long", confidence=0.8, reasoning="uptrend"))
    return provider


@pytest.fixture
def orchestrator(
    settings, sessions, strategies, accounts, positions, decisions, orders, brokers, market_data, intent_provider
):
    return TickOrchestrator(
        settings,
        sessions=sessions,
        strategies=strategies,
        accounts=accounts,
        positions=positions,
        decisions=decisions,
        orders=orders,
        brokers=brokers,
        market_data=market_data,
        intent_provider=intent_provider,
    )


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestEntryTick:
    async def test_entry_filled(self, orchestrator, broker, decisions, orders, sessions):
        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is True
        assert result.decision_id == TICK_ID
        assert result.order_id == "order-1"
        assert result.action == "execute"
        assert result.order_status == "filled"
        assert result.error is None

        request = broker.place_order.call_args[0][1]
        assert request.side == "buy"
        assert request.reduce_only is False
        assert request.notional_usd == pytest.approx(8000)
        assert request.size == pytest.approx(0.16)
        assert request.client_order_id == f"sess-sess-1-dec-{TICK_ID}"

        decisions.mark_executed.assert_awaited_once_with(TICK_ID)
        sessions.touch_last_tick.assert_awaited_once_with("sess-1")

    async def test_decision_written_before_execution(self, orchestrator, broker, decisions):
        async def place(ctx, request):
            assert decisions.create.await_count == 1
            return ExecutionResult(status="filled")

        broker.place_order.side_effect = place
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is True

    async def test_decision_row_contents(self, orchestrator, decisions):
        await orchestrator.tick("sess-1", TICK_ID)
        data = decisions.create.call_args[0][0]
        assert data["id"] == TICK_ID
        assert data["action"] == "execute"
        assert data["intent"]["bias"] == "long"
        assert data["error"] is None
        assert data["decision_json"]["orders"][0]["side"] == "buy"

    async def test_order_row_contents(self, orchestrator, orders):
        await orchestrator.tick("sess-1", TICK_ID)
        data = orders.create.call_args[0][0]
        assert data["decision_id"] == TICK_ID
        assert data["mode"] == "virtual"
        assert data["order_type"] == "entry"
        assert data["status"] == "filled"

    async def test_generates_tick_id(self, orchestrator):
        result = await orchestrator.tick("sess-1")
        assert result.success is True
        assert len(result.decision_id) == 36

    async def test_trade_windows_use_snapshot_time(self, orchestrator, orders):
        await orchestrator.tick("sess-1", TICK_ID)
        windows = [c[0][1] for c in orders.count_executed_since.call_args_list]
        assert windows == [TS - timedelta(hours=1), TS - timedelta(days=1)]

    async def test_intent_request(self, orchestrator, intent_provider):
        await orchestrator.tick("sess-1", TICK_ID)
        request = intent_provider.get_intent.call_args[0][0]
        assert request.prompt == "Trade BTC trends"
        assert request.model_name == "claude-sonnet-4-5"
        assert request.position is None


# ---------------------------------------------------------------------------
# Exits and peak tracking
# ---------------------------------------------------------------------------


class TestExitTick:
    async def test_exit_is_reduce_only_full_size(self, orchestrator, positions, intent_provider, broker):
        positions.list_for_account.return_value = [
            make_position(size=0.25, avg_entry=49000, opened_at=TS - timedelta(minutes=60))
        ]
        intent_provider.get_intent.return_value = AIIntent(bias="short", confidence=0.8)

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.action == "execute"
        request = broker.place_order.call_args[0][1]
        assert request.side == "sell"
        assert request.reduce_only is True
        assert request.size == 0.25

    async def test_exit_never_blocked_by_notional_cap(
        self, orchestrator, positions, intent_provider, broker
    ):
        orchestrator.settings = orchestrator.settings.model_copy(update={"MAX_ORDER_NOTIONAL_USD": 100.0})
        positions.list_for_account.return_value = [
            make_position(size=1.0, avg_entry=49000, opened_at=TS - timedelta(minutes=60))
        ]
        intent_provider.get_intent.return_value = AIIntent(bias="close", confidence=0.9)

        await orchestrator.tick("sess-1", TICK_ID)
        broker.place_order.assert_awaited_once()

    async def test_peak_persisted_when_advanced(self, orchestrator, positions, intent_provider):
        positions.list_for_account.return_value = [
            make_position(avg_entry=49000, peak_price=49500, opened_at=TS - timedelta(minutes=60))
        ]
        intent_provider.get_intent.return_value = AIIntent(bias="long", confidence=0.8)

        await orchestrator.tick("sess-1", TICK_ID)
        positions.update.assert_awaited_once_with(1, {"peak_price": 50000})

    async def test_peak_not_rewritten_when_unchanged(self, orchestrator, positions, intent_provider):
        positions.list_for_account.return_value = [
            make_position(avg_entry=49000, peak_price=52000, opened_at=TS - timedelta(minutes=60))
        ]
        intent_provider.get_intent.return_value = AIIntent(bias="long", confidence=0.8)

        await orchestrator.tick("sess-1", TICK_ID)
        positions.update.assert_not_called()


class TestAdvancePeak:
    def test_long_takes_max(self):
        assert advance_peak(make_position(side="long", peak_price=51000), 50500) == 51000
        assert advance_peak(make_position(side="long", peak_price=51000), 52000) == 52000

    def test_short_takes_min(self):
        assert advance_peak(make_position(side="short", avg_entry=50000), 49000) == 49000
        assert advance_peak(make_position(side="short", avg_entry=50000), 51000) == 50000


# ---------------------------------------------------------------------------
# Skips and guards
# ---------------------------------------------------------------------------


class TestSkips:
    async def test_skip_decision_writes_skipped_order(self, orchestrator, intent_provider, orders, broker, decisions, sessions):
        intent_provider.get_intent.return_value = AIIntent(bias="neutral", confidence=0.9)

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is True
        assert result.action == "skip"
        assert result.order_status == "skipped"
        broker.place_order.assert_not_called()
        data = orders.create.call_args[0][0]
        assert data["status"] == "skipped"
        assert data["side"] is None
        assert decisions.create.call_args[0][0]["error"] is not None
        decisions.mark_executed.assert_not_called()
        sessions.touch_last_tick.assert_awaited_once()

    async def test_notional_cap(self, orchestrator, broker, orders):
        orchestrator.settings = orchestrator.settings.model_copy(update={"MAX_ORDER_NOTIONAL_USD": 1000.0})

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.order_status == "skipped"
        broker.place_order.assert_not_called()
        assert "absolute cap" in orders.create.call_args[0][0]["venue_response"]["error"]

    async def test_live_kill_switch_before_execute(self, orchestrator, broker, sessions):
        broker.live = True
        sessions.get_status.return_value = "stopped"

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.order_status == "skipped"
        broker.place_order.assert_not_called()

    async def test_virtual_does_not_recheck_status(self, orchestrator, sessions):
        await orchestrator.tick("sess-1", TICK_ID)
        sessions.get_status.assert_not_called()

    async def test_failed_execution(self, orchestrator, broker, decisions):
        broker.place_order.return_value = ExecutionResult(status="failed", error="venue down")

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is True
        assert result.order_status == "failed"
        assert result.error == "venue down"
        decisions.mark_executed.assert_not_called()


class TestKillSwitchAndConfig:
    async def test_paused_session_does_nothing(self, orchestrator, sessions, decisions, market_data):
        sessions.get.return_value = make_session(status="paused")

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is False
        assert result.skipped is True
        assert "paused" in result.error
        decisions.create.assert_not_called()
        market_data.get_mark_price.assert_not_called()

    async def test_session_not_found(self, orchestrator, sessions):
        sessions.get.return_value = None
        result = await orchestrator.tick("sess-x", TICK_ID)
        assert result.success is False
        assert "not found" in result.error

    async def test_missing_ai_connection(self, orchestrator, strategies, decisions, sessions):
        strategies.get.return_value = strategies.get.return_value.model_copy(update={"ai_connection_id": None})

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is False
        assert "AI connection" in result.error
        decisions.create.assert_not_called()
        sessions.acquire_tick_lock.assert_not_called()

    async def test_strategy_owned_by_other_user(self, orchestrator, strategies, decisions):
        strategies.get.return_value = strategies.get.return_value.model_copy(update={"user_id": "user-2"})
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is False
        decisions.create.assert_not_called()

    async def test_account_owned_by_other_user(self, orchestrator, accounts, decisions):
        accounts.get.return_value = make_account(user_id="user-2")
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is False
        assert "Account" in result.error
        decisions.create.assert_not_called()

    async def test_no_account_linked(self, orchestrator, sessions):
        sessions.get.return_value = make_session(account_id=None)
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is False

    async def test_invalid_strategy_config(self, orchestrator, strategies, decisions):
        strategies.get.side_effect = ConfigurationError("Invalid strategy config for strat-1")
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is False
        assert "Invalid strategy config" in result.error
        decisions.create.assert_not_called()


# ---------------------------------------------------------------------------
# Idempotency and locking
# ---------------------------------------------------------------------------


class TestIdempotency:
    async def test_replay_returns_stored_outcome(self, orchestrator, decisions, orders, broker, sessions):
        decisions.get.return_value = DecisionRecord(id=TICK_ID, session_id="sess-1", action="execute")
        orders.get_by_decision.return_value = OrderRecord(
            id="order-9",
            session_id="sess-1",
            decision_id=TICK_ID,
            mode="virtual",
            client_order_id=f"sess-sess-1-dec-{TICK_ID}",
            market="BTC-PERP",
            status="filled",
        )

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.replayed is True
        assert result.order_id == "order-9"
        broker.place_order.assert_not_called()
        decisions.create.assert_not_called()
        sessions.acquire_tick_lock.assert_not_called()

    async def test_replay_without_order_does_not_execute(self, orchestrator, decisions, broker):
        decisions.get.return_value = DecisionRecord(id=TICK_ID, session_id="sess-1", action="execute")

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is False
        assert result.decision_id == TICK_ID
        broker.place_order.assert_not_called()

    async def test_lock_busy(self, orchestrator, sessions, market_data, decisions):
        sessions.acquire_tick_lock.return_value = False

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.skipped is True
        market_data.get_mark_price.assert_not_called()
        decisions.create.assert_not_called()

    async def test_lock_interval_from_cadence(self, orchestrator, sessions):
        sessions.get.return_value = make_session(cadence_seconds=60)
        await orchestrator.tick("sess-1", TICK_ID)
        sessions.acquire_tick_lock.assert_awaited_once_with("sess-1", 55_000)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_market_data_failure(self, orchestrator, market_data, decisions):
        market_data.get_mark_price.side_effect = ConnectionError("feed down")

        result = await orchestrator.tick("sess-1", TICK_ID)

        assert result.success is False
        assert "feed down" in result.error
        decisions.create.assert_not_called()

    async def test_account_state_failure(self, orchestrator, broker):
        broker.get_account_state.side_effect = RuntimeError("no account state")
        result = await orchestrator.tick("sess-1", TICK_ID)
        assert result.success is False

    def test_states_cover_pipeline(self):
        assert [s.value for s in TickState] == [
            "idle",
            "load_state",
            "fetch_market",
            "obtain_intent",
            "decide",
            "persist_decision",
            "execute",
            "persist_order",
            "update_timestamp",
            "done",
        ]
