"""Tick orchestrator: one session tick, from loaded state to persisted order.

LOAD_STATE -> FETCH_MARKET -> OBTAIN_INTENT -> DECIDE -> PERSIST_DECISION
-> EXECUTE -> PERSIST_ORDER -> UPDATE_TIMESTAMP

The decision row is written before any execution attempt and each decision
gets at most one order row. Order placement is never retried here.
"""

from __future__ import annotations

import enum
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from strategy_runner.engine.strategy_engine import evaluate_strategy
from strategy_runner.errors import ConfigurationError
from strategy_runner.intent_provider import IntentRequest
from strategy_runner.market_data import fetch_market_snapshot
from strategy_runner.models.account import AccountSnapshot, PositionSnapshot
from strategy_runner.models.decision import OrderIntent, StrategyDecision, StrategyEngineInput
from strategy_runner.models.order import BrokerContext, ExecutionResult, OrderRequest
from strategy_runner.models.records import TickResult
from strategy_runner.scheduler import resolve_cadence, tick_lock_interval_ms

if TYPE_CHECKING:
    from strategy_runner.brokers.base import Broker
    from strategy_runner.brokers.registry import BrokerRegistry
    from strategy_runner.config import Settings
    from strategy_runner.db.repository import (
        AccountRepository,
        DecisionRepository,
        OrderRepository,
        PositionRepository,
        SessionRepository,
        StrategyRepository,
    )
    from strategy_runner.intent_provider import IntentProvider
    from strategy_runner.market_data import MarketDataFeed
    from strategy_runner.models.market import MarketSnapshot
    from strategy_runner.models.records import (
        AccountRecord,
        PositionRecord,
        SessionRecord,
        StrategyRecord,
    )

logger = structlog.get_logger()


class TickState(enum.Enum):
    IDLE = "idle"
    LOAD_STATE = "load_state"
    FETCH_MARKET = "fetch_market"
    OBTAIN_INTENT = "obtain_intent"
    DECIDE = "decide"
    PERSIST_DECISION = "persist_decision"
    EXECUTE = "execute"
    PERSIST_ORDER = "persist_order"
    UPDATE_TIMESTAMP = "update_timestamp"
    DONE = "done"


class TickRun:
    """Per-tick state, so concurrent ticks for different sessions don't share it."""

    def __init__(self, session_id: str, tick_id: str) -> None:
        self.session_id = session_id
        self.tick_id = tick_id
        self.state = TickState.IDLE
        self.decision_id: str | None = None
        self.log = logger.bind(session_id=session_id, tick_id=tick_id)

    def set_state(self, new_state: TickState) -> None:
        old = self.state
        self.state = new_state
        self.log.debug("state_transition", old=old.value, new=new_state.value)


def _position_snapshot(record: PositionRecord) -> PositionSnapshot:
    return PositionSnapshot(
        market=record.market,
        side=record.side,
        size=record.size,
        avg_entry=record.avg_entry,
        unrealized_pnl=record.unrealized_pnl,
        opened_at=record.opened_at,
    )


def advance_peak(position: PositionRecord, price: float) -> float:
    """Best price since open: highest for longs, lowest (trough) for shorts."""
    peak = position.peak_price or position.avg_entry
    if position.side == "long":
        return max(peak, price)
    return min(peak, price)


class TickOrchestrator:
    def __init__(
        self,
        settings: Settings,
        sessions: SessionRepository,
        strategies: StrategyRepository,
        accounts: AccountRepository,
        positions: PositionRepository,
        decisions: DecisionRepository,
        orders: OrderRepository,
        brokers: BrokerRegistry,
        market_data: MarketDataFeed,
        intent_provider: IntentProvider,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.strategies = strategies
        self.accounts = accounts
        self.positions = positions
        self.decisions = decisions
        self.orders = orders
        self.brokers = brokers
        self.market_data = market_data
        self.intent_provider = intent_provider

    async def tick(self, session_id: str, tick_id: str | None = None) -> TickResult:
        """Run one tick. Never raises; every outcome is a TickResult.

        ``tick_id`` doubles as the decision id, so re-invoking with the same
        id replays the stored outcome instead of trading twice.
        """
        run = TickRun(session_id, tick_id or str(uuid.uuid4()))
        try:
            return await self._run(run)
        except ConfigurationError as e:
            run.log.warning("tick_config_error", error=str(e), state=run.state.value)
            return TickResult(success=False, decision_id=run.decision_id, error=str(e))
        except Exception as e:
            run.log.exception("tick_error", state=run.state.value)
            return TickResult(success=False, decision_id=run.decision_id, error=str(e))

    async def _run(self, run: TickRun) -> TickResult:
        run.set_state(TickState.LOAD_STATE)
        session = await self.sessions.get(run.session_id)
        if session is None:
            return TickResult(success=False, error=f"Session not found: {run.session_id}")
        if session.status != "running":
            run.log.info("tick_kill_switch", status=session.status)
            return TickResult(success=False, skipped=True, error=f"Session is {session.status}")

        replay = await self._replay(run)
        if replay is not None:
            return replay

        strategy, account = await self._load_config(session)
        broker = self.brokers.for_session(session)

        cadence = resolve_cadence(
            strategy.config.cadence_seconds,
            session.cadence_seconds,
            self.settings.DEFAULT_CADENCE_SECONDS,
        )
        interval_ms = tick_lock_interval_ms(
            cadence, self.settings.MIN_TICK_LOCK_INTERVAL_MS, self.settings.TICK_LOCK_TOLERANCE_MS
        )
        if not await self.sessions.acquire_tick_lock(session.id, interval_ms):
            run.log.info("tick_lock_busy", interval_ms=interval_ms)
            return TickResult(
                success=False, skipped=True, error="Tick already in progress or ran too recently"
            )

        # --- Market + account state ---
        run.set_state(TickState.FETCH_MARKET)
        snapshot = await fetch_market_snapshot(self.market_data, session.market)
        ctx = BrokerContext(
            user_id=session.user_id,
            session_id=session.id,
            account_id=account.id,
            market=session.market,
            market_data=snapshot,
        )
        await broker.on_tick(ctx)
        account_state = await broker.get_account_state(ctx)

        records = await self.positions.list_for_account(account.id)
        current = next((p for p in records if p.market == session.market), None)
        peak_price = await self._track_peak(current, snapshot.price)
        age_minutes = None
        if current is not None and current.opened_at is not None:
            age_minutes = max(0.0, (snapshot.timestamp - current.opened_at).total_seconds() / 60)

        now = snapshot.timestamp
        trades_last_hour = await self.orders.count_executed_since(session.id, now - timedelta(hours=1))
        trades_last_day = await self.orders.count_executed_since(session.id, now - timedelta(days=1))
        recent_trades = await self.orders.recent_executed(session.id, self.settings.RECENT_TRADES_LIMIT)

        positions = tuple(_position_snapshot(p) for p in records)
        current_snapshot = _position_snapshot(current) if current is not None else None
        account_snapshot = AccountSnapshot(
            equity=account_state.equity_usd,
            cash_balance=account_state.cash_usd,
            starting_equity=account.starting_equity,
            gross_exposure_usd=account_state.gross_exposure_usd,
        )

        # --- Intent ---
        run.set_state(TickState.OBTAIN_INTENT)
        intent = await self.intent_provider.get_intent(
            IntentRequest(
                session_id=session.id,
                market=session.market,
                prompt=strategy.prompt,
                model_name=strategy.model_name,
                market_snapshot=snapshot,
                position=current_snapshot,
                account=account_snapshot,
            )
        )

        # --- Decide ---
        run.set_state(TickState.DECIDE)
        decision = evaluate_strategy(
            StrategyEngineInput(
                market=session.market,
                market_snapshot=snapshot,
                positions=positions,
                current_position=current_snapshot,
                account=account_snapshot,
                ai_intent=intent,
                config=strategy.config,
                venue=broker.venue,
                position_age_minutes=age_minutes,
                peak_price=peak_price,
                recent_trades=tuple(recent_trades),
                trades_last_hour=trades_last_hour,
                trades_last_day=trades_last_day,
            ),
            default_max_position_usd=self.settings.DEFAULT_MAX_POSITION_USD,
        )
        run.log.info(
            "tick_decided",
            action=decision.action,
            summary=decision.action_summary,
            bias=intent.bias,
            confidence=intent.confidence,
        )

        # --- Persist decision ---
        run.set_state(TickState.PERSIST_DECISION)
        run.decision_id = await self.decisions.create(
            {
                "id": run.tick_id,
                "session_id": session.id,
                "action": decision.action,
                "action_summary": decision.action_summary,
                "intent": intent.model_dump(mode="json"),
                "risk_result": decision.risk_result.model_dump(mode="json"),
                "decision_json": decision.model_dump(mode="json"),
                "executed": False,
                "error": None if decision.action == "execute" else decision.action_summary,
            }
        )

        existing = await self.orders.get_by_decision(run.decision_id)
        if existing is not None:
            run.log.info("tick_order_exists", order_id=existing.id)
            return TickResult(
                success=True,
                decision_id=run.decision_id,
                order_id=existing.id,
                action=decision.action,
                order_status=existing.status,
                replayed=True,
            )

        # --- Execute or skip ---
        run.set_state(TickState.EXECUTE)
        order_intent = decision.orders[0] if decision.action == "execute" and decision.orders else None
        client_order_id = f"sess-{session.id}-dec-{run.decision_id}"
        request = (
            self._build_request(order_intent, current, snapshot, client_order_id)
            if order_intent is not None
            else None
        )
        result = await self._execute(run, session, broker, ctx, decision, request)

        # --- Persist order ---
        run.set_state(TickState.PERSIST_ORDER)
        order_id = await self.orders.create(
            {
                "session_id": session.id,
                "decision_id": run.decision_id,
                "mode": session.mode,
                "client_order_id": client_order_id,
                "market": session.market,
                "side": request.side if request else None,
                "order_type": order_intent.type if order_intent else None,
                "size": request.size if request else 0.0,
                "notional_usd": request.notional_usd if request else 0.0,
                "status": result.status,
                "filled_price": result.filled_price,
                "filled_size": result.filled_size,
                "venue_response": {**result.venue_response, "error": result.error}
                if result.error
                else result.venue_response,
            }
        )
        if result.executed:
            await self.decisions.mark_executed(run.decision_id)

        run.set_state(TickState.UPDATE_TIMESTAMP)
        await self.sessions.touch_last_tick(session.id)

        run.set_state(TickState.DONE)
        run.log.info("tick_complete", order_id=order_id, order_status=result.status)
        return TickResult(
            success=True,
            decision_id=run.decision_id,
            order_id=order_id,
            action=decision.action,
            order_status=result.status,
            error=result.error if result.status == "failed" else None,
        )

    async def _replay(self, run: TickRun) -> TickResult | None:
        """Outcome of an earlier invocation with the same tick id, if any."""
        prior = await self.decisions.get(run.tick_id)
        if prior is None:
            return None
        run.decision_id = prior.id
        order = await self.orders.get_by_decision(prior.id)
        if order is None:
            run.log.warning("tick_replay_without_order")
            return TickResult(
                success=False,
                decision_id=prior.id,
                action=prior.action,
                error="Decision already recorded without an order; not re-executing",
            )
        run.log.info("tick_replayed", order_id=order.id)
        return TickResult(
            success=True,
            decision_id=prior.id,
            order_id=order.id,
            action=prior.action,
            order_status=order.status,
            replayed=True,
        )

    async def _load_config(self, session: SessionRecord) -> tuple[StrategyRecord, AccountRecord]:
        strategy = await self.strategies.get(session.strategy_id)
        if strategy is None:
            raise ConfigurationError(f"Strategy not found: {session.strategy_id}")
        if strategy.user_id != session.user_id:
            raise ConfigurationError("Strategy does not belong to the session owner")
        if not strategy.ai_connection_id:
            raise ConfigurationError("No AI connection linked to strategy")
        if not session.account_id:
            raise ConfigurationError("No account linked to session")
        account = await self.accounts.get(session.account_id)
        if account is None:
            raise ConfigurationError(f"Account not found: {session.account_id}")
        if account.user_id != session.user_id:
            raise ConfigurationError("Account does not belong to the session owner")
        return strategy, account

    async def _track_peak(self, position: PositionRecord | None, price: float) -> float | None:
        if position is None:
            return None
        peak = advance_peak(position, price)
        if peak != position.peak_price:
            await self.positions.update(position.id, {"peak_price": peak})
        return peak

    def _build_request(
        self,
        order: OrderIntent,
        position: PositionRecord | None,
        snapshot: MarketSnapshot,
        client_order_id: str,
    ) -> OrderRequest:
        if order.type == "exit" and position is not None:
            size = position.size
            reduce_only = True
        else:
            size = order.notional_usd / snapshot.mid if snapshot.mid > 0 else 0.0
            reduce_only = False
        return OrderRequest(
            market=order.market,
            side=order.side,
            size=size,
            notional_usd=order.notional_usd,
            reduce_only=reduce_only,
            client_order_id=client_order_id,
        )

    async def _execute(
        self,
        run: TickRun,
        session: SessionRecord,
        broker: Broker,
        ctx: BrokerContext,
        decision: StrategyDecision,
        request: OrderRequest | None,
    ) -> ExecutionResult:
        if request is None:
            return ExecutionResult(status="skipped", error=decision.action_summary)

        cap = self.settings.MAX_ORDER_NOTIONAL_USD
        if not request.reduce_only and request.notional_usd > cap:
            run.log.warning("notional_cap_blocked", notional=request.notional_usd, cap=cap)
            return ExecutionResult(
                status="skipped",
                error=f"Order notional ${request.notional_usd:.2f} exceeds absolute cap ${cap:.2f}",
            )

        if broker.live:
            status = await self.sessions.get_status(session.id)
            if status != "running":
                run.log.warning("kill_switch_before_execute", status=status)
                return ExecutionResult(
                    status="skipped", error=f"Session {status} before execution (kill switch)"
                )

        result = await broker.place_order(ctx, request)
        if result.status == "failed":
            run.log.warning("order_failed", error=result.error, client_order_id=request.client_order_id)
        return result
