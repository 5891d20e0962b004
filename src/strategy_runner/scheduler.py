"""Cadence helpers and the tick scheduler loop."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from strategy_runner.models.records import TickResult

if TYPE_CHECKING:
    from strategy_runner.config import Settings
    from strategy_runner.db.repository import SessionRepository
    from strategy_runner.models.records import SessionRecord
    from strategy_runner.orchestrator import TickOrchestrator

logger = structlog.get_logger()


def should_tick(now_ms: int, last_tick_at_ms: int | None, cadence_seconds: int) -> bool:
    """True once at least ``cadence_seconds`` have passed since the last tick."""
    if not last_tick_at_ms:
        return True
    return now_ms - last_tick_at_ms >= cadence_seconds * 1000


def resolve_cadence(
    strategy_cadence: int | None,
    session_cadence: int | None,
    default: int,
) -> int:
    """Strategy setting first, then the session column, then the default."""
    for value in (strategy_cadence, session_cadence):
        if value and value > 0:
            return int(value)
    return default


def tick_lock_interval_ms(cadence_seconds: int, floor_ms: int, tolerance_ms: int) -> int:
    """Minimum spacing between ticks enforced by the session lock."""
    return max(floor_ms, cadence_seconds * 1000 - tolerance_ms)


class TickScheduler:
    def __init__(
        self,
        settings: Settings,
        sessions: SessionRepository,
        orchestrator: TickOrchestrator,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.orchestrator = orchestrator
        self.running = False
        self._semaphore = asyncio.Semaphore(settings.TICK_BATCH_SIZE)

    async def run_forever(self) -> None:
        self.running = True
        logger.info("scheduler_started", interval=self.settings.SCHEDULER_INTERVAL_SECONDS)
        while self.running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("scheduler_cycle_error")
            if self.running:
                await asyncio.sleep(self.settings.SCHEDULER_INTERVAL_SECONDS)

    def stop(self) -> None:
        self.running = False
        logger.info("scheduler_stopped")

    async def run_once(self, now_ms: int | None = None) -> list[TickResult]:
        """Tick every running session whose cadence has elapsed."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        due = []
        for session, filters in await self.sessions.list_running():
            cadence = resolve_cadence(
                filters.get("cadenceSeconds") or filters.get("cadence_seconds"),
                session.cadence_seconds,
                self.settings.DEFAULT_CADENCE_SECONDS,
            )
            last_ms = int(session.last_tick_at.timestamp() * 1000) if session.last_tick_at else None
            if should_tick(now_ms, last_ms, cadence):
                due.append(session)

        if not due:
            return []
        logger.info("scheduler_ticking", due=len(due))
        results = await asyncio.gather(*(self._tick_one(s) for s in due))

        ticked = sum(1 for r in results if r.success)
        logger.info("scheduler_batch_done", due=len(due), ticked=ticked)
        return list(results)

    async def _tick_one(self, session: SessionRecord) -> TickResult:
        async with self._semaphore:
            try:
                return await self.orchestrator.tick(session.id)
            except Exception as e:
                logger.exception("scheduler_tick_error", session_id=session.id)
                return TickResult(success=False, error=str(e))
