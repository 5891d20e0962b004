"""DB repositories: sessions, strategies, accounts, positions, decisions, orders."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from strategy_runner.db.models import (
    AccountORM,
    DecisionORM,
    OrderORM,
    PositionORM,
    SessionORM,
    StrategyORM,
    VirtualTradeORM,
)
from strategy_runner.errors import ConfigurationError
from strategy_runner.models.decision import RecentTrade
from strategy_runner.models.records import (
    AccountRecord,
    DecisionRecord,
    OrderRecord,
    PositionRecord,
    SessionRecord,
    StrategyRecord,
)
from strategy_runner.models.strategy import StrategyConfig

logger = structlog.get_logger()

EXECUTED_STATUSES = ("sent", "filled")


def _orm_to_session_record(orm: SessionORM) -> SessionRecord:
    return SessionRecord(
        id=orm.id,
        user_id=orm.user_id,
        strategy_id=orm.strategy_id,
        mode=orm.mode,
        venue=orm.venue or "hyperliquid",
        status=orm.status,
        market=orm.market,
        cadence_seconds=orm.cadence_seconds,
        account_id=orm.account_id,
        last_tick_at=orm.last_tick_at,
    )


def _orm_to_position_record(orm: PositionORM) -> PositionRecord:
    return PositionRecord(
        id=orm.id,
        account_id=orm.account_id,
        market=orm.market,
        side=orm.side,
        size=float(orm.size),
        avg_entry=float(orm.avg_entry),
        unrealized_pnl=float(orm.unrealized_pnl or 0),
        peak_price=float(orm.peak_price) if orm.peak_price is not None else None,
        opened_at=orm.opened_at,
    )


def _orm_to_order_record(orm: OrderORM) -> OrderRecord:
    return OrderRecord(
        id=orm.id,
        session_id=orm.session_id,
        decision_id=orm.decision_id,
        mode=orm.mode,
        client_order_id=orm.client_order_id,
        market=orm.market,
        side=orm.side,
        size=float(orm.size or 0),
        status=orm.status,
        created_at=orm.created_at,
    )


class SessionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, session_id: str) -> SessionRecord | None:
        async with self.session_factory() as session:
            stmt = select(SessionORM).where(SessionORM.id == session_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            return _orm_to_session_record(orm) if orm is not None else None

    async def get_status(self, session_id: str) -> str | None:
        """Fresh read of the session status (kill switch)."""
        async with self.session_factory() as session:
            stmt = select(SessionORM.status).where(SessionORM.id == session_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_running(self) -> list[tuple[SessionRecord, dict]]:
        """Running sessions paired with their strategy's raw filters."""
        async with self.session_factory() as session:
            stmt = (
                select(SessionORM, StrategyORM.filters)
                .join(StrategyORM, StrategyORM.id == SessionORM.strategy_id)
                .where(SessionORM.status == "running")
            )
            result = await session.execute(stmt)
            return [(_orm_to_session_record(s), filters or {}) for s, filters in result.all()]

    async def acquire_tick_lock(self, session_id: str, min_interval_ms: int) -> bool:
        """Claim the session for one tick.

        A single conditional UPDATE: it only matches when no tick has claimed
        the session within ``min_interval_ms``, so concurrent callers cannot
        both win.
        """
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(milliseconds=min_interval_ms)
        async with self.session_factory() as session:
            stmt = (
                update(SessionORM)
                .where(
                    SessionORM.id == session_id,
                    or_(SessionORM.last_tick_at.is_(None), SessionORM.last_tick_at < cutoff),
                )
                .values(last_tick_at=now)
            )
            result = await session.execute(stmt)
            await session.commit()
            acquired = (result.rowcount or 0) > 0
            logger.debug("tick_lock", session_id=session_id, acquired=acquired)
            return acquired

    async def touch_last_tick(self, session_id: str) -> None:
        async with self.session_factory() as session:
            stmt = (
                update(SessionORM)
                .where(SessionORM.id == session_id)
                .values(last_tick_at=datetime.now(timezone.utc))
            )
            await session.execute(stmt)
            await session.commit()


class StrategyRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, strategy_id: str) -> StrategyRecord | None:
        async with self.session_factory() as session:
            stmt = select(StrategyORM).where(StrategyORM.id == strategy_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            try:
                config = StrategyConfig.model_validate(orm.filters or {})
            except ValidationError as e:
                raise ConfigurationError(f"Invalid strategy config for {strategy_id}: {e}") from e
            return StrategyRecord(
                id=orm.id,
                user_id=orm.user_id,
                name=orm.name or "",
                prompt=orm.prompt or "",
                model_provider=orm.model_provider or "",
                model_name=orm.model_name or "",
                ai_connection_id=orm.ai_connection_id,
                config=config,
            )


class AccountRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, account_id: str) -> AccountRecord | None:
        async with self.session_factory() as session:
            stmt = select(AccountORM).where(AccountORM.id == account_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            return AccountRecord(
                id=orm.id,
                user_id=orm.user_id,
                mode=orm.mode,
                venue=orm.venue or "hyperliquid",
                starting_equity=float(orm.starting_equity),
                cash_balance=float(orm.cash_balance),
                equity=float(orm.equity),
            )

    async def update(self, account_id: str, data: dict) -> None:
        async with self.session_factory() as session:
            stmt = select(AccountORM).where(AccountORM.id == account_id)
            result = await session.execute(stmt)
            account = result.scalar_one_or_none()
            if account is None:
                raise ValueError(f"Account not found: {account_id}")
            for key, value in data.items():
                setattr(account, key, value)
            await session.flush()
            await session.commit()
            logger.debug("account_updated", account_id=account_id, fields=list(data.keys()))


class PositionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def list_for_account(self, account_id: str) -> list[PositionRecord]:
        async with self.session_factory() as session:
            stmt = select(PositionORM).where(PositionORM.account_id == account_id)
            result = await session.execute(stmt)
            return [_orm_to_position_record(p) for p in result.scalars().all()]

    async def update(self, position_id: int, data: dict) -> None:
        async with self.session_factory() as session:
            stmt = select(PositionORM).where(PositionORM.id == position_id)
            result = await session.execute(stmt)
            position = result.scalar_one_or_none()
            if position is None:
                raise ValueError(f"Position not found: {position_id}")
            for key, value in data.items():
                setattr(position, key, value)
            await session.flush()
            await session.commit()

    async def replace_for_market(self, account_id: str, market: str, positions: list[dict]) -> None:
        """Overwrite the stored positions for one market with venue-reported ones."""
        async with self.session_factory() as session:
            await session.execute(
                delete(PositionORM).where(
                    PositionORM.account_id == account_id,
                    PositionORM.market == market,
                )
            )
            for data in positions:
                session.add(PositionORM(account_id=account_id, market=market, **data))
            await session.commit()
            logger.debug("positions_synced", account_id=account_id, market=market, count=len(positions))


class DecisionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(self, data: dict) -> str:
        """Append a decision row. Returns its id."""
        async with self.session_factory() as session:
            data = {"id": str(uuid.uuid4()), **data}
            orm = DecisionORM(**data)
            session.add(orm)
            await session.flush()
            decision_id = orm.id
            await session.commit()
            logger.info("decision_logged", decision_id=decision_id, action=data.get("action"))
            return decision_id

    async def get(self, decision_id: str) -> DecisionRecord | None:
        async with self.session_factory() as session:
            stmt = select(DecisionORM).where(DecisionORM.id == decision_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            return DecisionRecord(
                id=orm.id,
                session_id=orm.session_id,
                action=orm.action,
                action_summary=orm.action_summary or "",
                executed=bool(orm.executed),
                error=orm.error,
                created_at=orm.created_at,
            )

    async def mark_executed(self, decision_id: str) -> None:
        async with self.session_factory() as session:
            stmt = update(DecisionORM).where(DecisionORM.id == decision_id).values(executed=True)
            await session.execute(stmt)
            await session.commit()


class OrderRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(self, data: dict) -> str:
        """Append an order row. ``decision_id`` is unique, so a second row for one decision fails."""
        async with self.session_factory() as session:
            data = {"id": str(uuid.uuid4()), **data}
            orm = OrderORM(**data)
            session.add(orm)
            await session.flush()
            order_id = orm.id
            await session.commit()
            logger.info(
                "order_logged",
                order_id=order_id,
                decision_id=data.get("decision_id"),
                status=data.get("status"),
            )
            return order_id

    async def get_by_decision(self, decision_id: str) -> OrderRecord | None:
        async with self.session_factory() as session:
            stmt = select(OrderORM).where(OrderORM.decision_id == decision_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            return _orm_to_order_record(orm) if orm is not None else None

    async def count_executed_since(self, session_id: str, since: datetime) -> int:
        async with self.session_factory() as session:
            stmt = select(func.count(OrderORM.id)).where(
                OrderORM.session_id == session_id,
                OrderORM.status.in_(EXECUTED_STATUSES),
                OrderORM.created_at >= since,
            )
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def recent_executed(self, session_id: str, limit: int = 10) -> list[RecentTrade]:
        """Executed orders, newest first."""
        async with self.session_factory() as session:
            stmt = (
                select(OrderORM)
                .where(
                    OrderORM.session_id == session_id,
                    OrderORM.status.in_(EXECUTED_STATUSES),
                    OrderORM.side.is_not(None),
                )
                .order_by(OrderORM.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [
                RecentTrade(side=o.side, timestamp=o.created_at)
                for o in result.scalars().all()
            ]


class VirtualTradeRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record_fill(
        self,
        trade: dict,
        cash_balance: float,
        position: dict | None = None,
        position_id: int | None = None,
    ) -> int:
        """Apply one simulated fill in a single transaction.

        The position change, the account's new cash balance and the trade row
        commit together or not at all. ``trade["action"]`` selects the position
        change: ``open`` inserts ``position``, ``close`` deletes ``position_id``,
        ``add``/``reduce`` update ``position_id`` with ``position``.
        """
        action = trade["action"]
        async with self.session_factory() as session:
            if action == "open":
                session.add(PositionORM(**position))
            elif action == "close":
                await session.execute(delete(PositionORM).where(PositionORM.id == position_id))
            else:
                await session.execute(
                    update(PositionORM).where(PositionORM.id == position_id).values(**position)
                )
            await session.execute(
                update(AccountORM)
                .where(AccountORM.id == trade["account_id"])
                .values(cash_balance=cash_balance)
            )
            orm = VirtualTradeORM(**trade)
            session.add(orm)
            await session.flush()
            trade_id = orm.id
            await session.commit()
            logger.info(
                "virtual_trade_recorded",
                trade_id=trade_id,
                action=action,
                market=trade.get("market"),
            )
            return trade_id
