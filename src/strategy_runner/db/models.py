"""SQLAlchemy ORM models for sessions, accounts, decisions and orders."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StrategyORM(Base):
    __tablename__ = "strategies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(100), default="")
    prompt: Mapped[str] = mapped_column(Text, default="")
    model_provider: Mapped[str | None] = mapped_column(String(30))
    model_name: Mapped[str | None] = mapped_column(String(100))
    ai_connection_id: Mapped[str | None] = mapped_column(String(36))
    filters: Mapped[dict] = mapped_column(JSONB, default=dict)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_strategies_user", "user_id"),)


class AccountORM(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    mode: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("mode IN ('virtual', 'live')"),
        nullable=False,
    )
    venue: Mapped[str] = mapped_column(String(20), default="hyperliquid")
    starting_equity: Mapped[float] = mapped_column(Numeric(20, 4), nullable=False)
    cash_balance: Mapped[float] = mapped_column(Numeric(20, 4), nullable=False)
    equity: Mapped[float] = mapped_column(Numeric(20, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class SessionORM(Base):
    __tablename__ = "strategy_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    strategy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("strategies.id"), nullable=False
    )
    account_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("accounts.id"))
    mode: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("mode IN ('virtual', 'live')"),
        nullable=False,
    )
    venue: Mapped[str] = mapped_column(String(20), default="hyperliquid")
    status: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("status IN ('running', 'paused', 'stopped')"),
        default="stopped",
    )
    market: Mapped[str] = mapped_column(String(30), nullable=False)
    cadence_seconds: Mapped[int | None] = mapped_column(Integer)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_tick_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_user", "user_id"),
    )


class PositionORM(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False
    )
    market: Mapped[str] = mapped_column(String(30), nullable=False)
    side: Mapped[str] = mapped_column(
        String(5),
        CheckConstraint("side IN ('long', 'short')"),
        nullable=False,
    )
    size: Mapped[float] = mapped_column(Numeric(20, 8), nullable=False)
    avg_entry: Mapped[float] = mapped_column(Numeric(20, 8), nullable=False)
    unrealized_pnl: Mapped[float] = mapped_column(Numeric(20, 4), default=0)
    peak_price: Mapped[float | None] = mapped_column(Numeric(20, 8))
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (UniqueConstraint("account_id", "market", name="uq_positions_account_market"),)


class DecisionORM(Base):
    __tablename__ = "decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("strategy_sessions.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("action IN ('execute', 'skip')"),
        nullable=False,
    )
    action_summary: Mapped[str] = mapped_column(Text, default="")
    intent: Mapped[dict] = mapped_column(JSONB, nullable=False)
    risk_result: Mapped[dict] = mapped_column(JSONB, nullable=False)
    decision_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
    executed: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_decisions_session", "session_id"),
        Index("idx_decisions_created", created_at.desc()),
    )


class OrderORM(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("strategy_sessions.id"), nullable=False
    )
    decision_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("decisions.id"), unique=True, nullable=False
    )
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    client_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    market: Mapped[str] = mapped_column(String(30), nullable=False)
    side: Mapped[str | None] = mapped_column(String(4))
    order_type: Mapped[str | None] = mapped_column(String(5))
    size: Mapped[float] = mapped_column(Numeric(20, 8), default=0)
    notional_usd: Mapped[float] = mapped_column(Numeric(20, 4), default=0)
    status: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("status IN ('sent', 'filled', 'failed', 'skipped')"),
        nullable=False,
    )
    filled_price: Mapped[float | None] = mapped_column(Numeric(20, 8))
    filled_size: Mapped[float | None] = mapped_column(Numeric(20, 8))
    venue_response: Mapped[dict | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_orders_session_created", "session_id", created_at.desc()),
        Index("idx_orders_status", "status"),
    )


class VirtualTradeORM(Base):
    __tablename__ = "virtual_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False
    )
    session_id: Mapped[str | None] = mapped_column(String(36))
    client_order_id: Mapped[str | None] = mapped_column(String(100))
    market: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(
        String(6),
        CheckConstraint("action IN ('open', 'add', 'reduce', 'close')"),
        nullable=False,
    )
    side: Mapped[str] = mapped_column(String(4), nullable=False)
    size: Mapped[float] = mapped_column(Numeric(20, 8), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(20, 8), nullable=False)
    fee_usd: Mapped[float] = mapped_column(Numeric(20, 4), default=0)
    realized_pnl_usd: Mapped[float] = mapped_column(Numeric(20, 4), default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_virtual_trades_account", "account_id", created_at.desc()),)
