"""Unit tests for cadence helpers and TickScheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import make_session
from strategy_runner.models.records import TickResult
from strategy_runner.scheduler import (
    TickScheduler,
    resolve_cadence,
    should_tick,
    tick_lock_interval_ms,
)

NOW_MS = 1_735_732_800_000  # 2025-01-01 12:00:00 UTC


# ---------------------------------------------------------------------------
# should_tick()
# ---------------------------------------------------------------------------


class TestShouldTick:
    @pytest.mark.parametrize(
        "elapsed_s, expected",
        [(59, False), (60, True), (61, True)],
    )
    def test_cadence_boundary(self, elapsed_s, expected):
        assert should_tick(NOW_MS, NOW_MS - elapsed_s * 1000, 60) is expected

    def test_never_ticked(self):
        assert should_tick(NOW_MS, None, 60) is True

    def test_zero_last_tick(self):
        assert should_tick(NOW_MS, 0, 60) is True


class TestResolveCadence:
    def test_strategy_wins(self):
        assert resolve_cadence(120, 60, 30) == 120

    def test_session_when_strategy_unset(self):
        assert resolve_cadence(None, 60, 30) == 60

    def test_default(self):
        assert resolve_cadence(None, None, 30) == 30

    def test_non_positive_ignored(self):
        assert resolve_cadence(0, -5, 30) == 30


class TestTickLockInterval:
    def test_cadence_minus_tolerance(self):
        assert tick_lock_interval_ms(60, 10_000, 5_000) == 55_000

    def test_floor(self):
        assert tick_lock_interval_ms(5, 10_000, 5_000) == 10_000


# ---------------------------------------------------------------------------
# TickScheduler.run_once()
# ---------------------------------------------------------------------------


def _ms_ago(seconds: int) -> datetime:
    return datetime.fromtimestamp((NOW_MS - seconds * 1000) / 1000, tz=timezone.utc)


@pytest.fixture
def sessions():
    return AsyncMock()


@pytest.fixture
def orchestrator():
    orch = AsyncMock()
    orch.tick = AsyncMock(side_effect=lambda sid: TickResult(success=True, decision_id=f"d-{sid}"))
    return orch


@pytest.fixture
def scheduler(settings, sessions, orchestrator):
    return TickScheduler(settings, sessions, orchestrator)


class TestRunOnce:
    async def test_ticks_due_sessions_only(self, scheduler, sessions, orchestrator):
        sessions.list_running = AsyncMock(
            return_value=[
                (make_session(id="due", last_tick_at=_ms_ago(40)), {}),
                (make_session(id="fresh", last_tick_at=_ms_ago(10)), {}),
                (make_session(id="never"), {}),
            ]
        )

        results = await scheduler.run_once(now_ms=NOW_MS)

        ticked = sorted(c[0][0] for c in orchestrator.tick.call_args_list)
        assert ticked == ["due", "never"]
        assert all(r.success for r in results)

    async def test_strategy_cadence_from_filters(self, scheduler, sessions, orchestrator):
        sessions.list_running = AsyncMock(
            return_value=[
                (make_session(id="camel", last_tick_at=_ms_ago(90)), {"cadenceSeconds": 120}),
                (make_session(id="snake", last_tick_at=_ms_ago(90)), {"cadence_seconds": 60}),
            ]
        )

        await scheduler.run_once(now_ms=NOW_MS)

        assert [c[0][0] for c in orchestrator.tick.call_args_list] == ["snake"]

    async def test_session_cadence_column(self, scheduler, sessions, orchestrator):
        sessions.list_running = AsyncMock(
            return_value=[(make_session(cadence_seconds=300, last_tick_at=_ms_ago(120)), {})]
        )
        assert await scheduler.run_once(now_ms=NOW_MS) == []
        orchestrator.tick.assert_not_called()

    async def test_tick_exception_becomes_failed_result(self, scheduler, sessions, orchestrator):
        sessions.list_running = AsyncMock(return_value=[(make_session(), {})])
        orchestrator.tick.side_effect = RuntimeError("boom")

        results = await scheduler.run_once(now_ms=NOW_MS)

        assert results[0].success is False
        assert results[0].error == "boom"

    async def test_no_running_sessions(self, scheduler, sessions):
        sessions.list_running = AsyncMock(return_value=[])
        assert await scheduler.run_once(now_ms=NOW_MS) == []


class TestRunForever:
    async def test_stop_ends_loop(self, scheduler, sessions):
        async def list_running():
            scheduler.stop()
            return []

        sessions.list_running = AsyncMock(side_effect=list_running)
        await scheduler.run_forever()

        assert scheduler.running is False
        sessions.list_running.assert_awaited_once()

    async def test_cycle_error_does_not_crash(self, scheduler, sessions):
        calls = []

        async def list_running():
            calls.append(1)
            scheduler.stop()
            raise RuntimeError("db down")

        sessions.list_running = AsyncMock(side_effect=list_running)
        await scheduler.run_forever()
        assert calls == [1]
