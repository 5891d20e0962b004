"""Initial schema: strategies, accounts, strategy_sessions, positions,
decisions, orders, virtual_trades.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- strategies ---
    op.create_table(
        "strategies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), server_default=""),
        sa.Column("prompt", sa.Text, server_default=""),
        sa.Column("model_provider", sa.String(30)),
        sa.Column("model_name", sa.String(100)),
        sa.Column("ai_connection_id", sa.String(36)),
        sa.Column("filters", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("version", sa.Integer, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_strategies_user", "strategies", ["user_id"])

    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "mode",
            sa.String(10),
            sa.CheckConstraint("mode IN ('virtual', 'live')"),
            nullable=False,
        ),
        sa.Column("venue", sa.String(20), server_default="hyperliquid"),
        sa.Column("starting_equity", sa.Numeric(20, 4), nullable=False),
        sa.Column("cash_balance", sa.Numeric(20, 4), nullable=False),
        sa.Column("equity", sa.Numeric(20, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- strategy_sessions ---
    op.create_table(
        "strategy_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("strategy_id", sa.String(36), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id")),
        sa.Column(
            "mode",
            sa.String(10),
            sa.CheckConstraint("mode IN ('virtual', 'live')"),
            nullable=False,
        ),
        sa.Column("venue", sa.String(20), server_default="hyperliquid"),
        sa.Column(
            "status",
            sa.String(10),
            sa.CheckConstraint("status IN ('running', 'paused', 'stopped')"),
            server_default="stopped",
        ),
        sa.Column("market", sa.String(30), nullable=False),
        sa.Column("cadence_seconds", sa.Integer),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("last_tick_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_sessions_status", "strategy_sessions", ["status"])
    op.create_index("idx_sessions_user", "strategy_sessions", ["user_id"])

    # --- positions ---
    op.create_table(
        "positions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("market", sa.String(30), nullable=False),
        sa.Column(
            "side",
            sa.String(5),
            sa.CheckConstraint("side IN ('long', 'short')"),
            nullable=False,
        ),
        sa.Column("size", sa.Numeric(20, 8), nullable=False),
        sa.Column("avg_entry", sa.Numeric(20, 8), nullable=False),
        sa.Column("unrealized_pnl", sa.Numeric(20, 4), server_default="0"),
        sa.Column("peak_price", sa.Numeric(20, 8)),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "market", name="uq_positions_account_market"),
    )

    # --- decisions ---
    op.create_table(
        "decisions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id", sa.String(36), sa.ForeignKey("strategy_sessions.id"), nullable=False
        ),
        sa.Column(
            "action",
            sa.String(10),
            sa.CheckConstraint("action IN ('execute', 'skip')"),
            nullable=False,
        ),
        sa.Column("action_summary", sa.Text, server_default=""),
        sa.Column("intent", JSONB, nullable=False),
        sa.Column("risk_result", JSONB, nullable=False),
        sa.Column("decision_json", JSONB, nullable=False),
        sa.Column("executed", sa.Boolean, server_default=sa.false()),
        sa.Column("error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_decisions_session", "decisions", ["session_id"])
    op.create_index("idx_decisions_created", "decisions", [sa.text("created_at DESC")])

    # --- orders ---
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "session_id", sa.String(36), sa.ForeignKey("strategy_sessions.id"), nullable=False
        ),
        sa.Column(
            "decision_id",
            sa.String(36),
            sa.ForeignKey("decisions.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("mode", sa.String(10), nullable=False),
        sa.Column("client_order_id", sa.String(100), unique=True, nullable=False),
        sa.Column("market", sa.String(30), nullable=False),
        sa.Column("side", sa.String(4)),
        sa.Column("order_type", sa.String(5)),
        sa.Column("size", sa.Numeric(20, 8), server_default="0"),
        sa.Column("notional_usd", sa.Numeric(20, 4), server_default="0"),
        sa.Column(
            "status",
            sa.String(10),
            sa.CheckConstraint("status IN ('sent', 'filled', 'failed', 'skipped')"),
            nullable=False,
        ),
        sa.Column("filled_price", sa.Numeric(20, 8)),
        sa.Column("filled_size", sa.Numeric(20, 8)),
        sa.Column("venue_response", JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_orders_session_created", "orders", ["session_id", sa.text("created_at DESC")]
    )
    op.create_index("idx_orders_status", "orders", ["status"])

    # --- virtual_trades ---
    op.create_table(
        "virtual_trades",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("session_id", sa.String(36)),
        sa.Column("client_order_id", sa.String(100)),
        sa.Column("market", sa.String(30), nullable=False),
        sa.Column(
            "action",
            sa.String(6),
            sa.CheckConstraint("action IN ('open', 'add', 'reduce', 'close')"),
            nullable=False,
        ),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("size", sa.Numeric(20, 8), nullable=False),
        sa.Column("price", sa.Numeric(20, 8), nullable=False),
        sa.Column("fee_usd", sa.Numeric(20, 4), server_default="0"),
        sa.Column("realized_pnl_usd", sa.Numeric(20, 4), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_virtual_trades_account", "virtual_trades", ["account_id", sa.text("created_at DESC")]
    )


def downgrade() -> None:
    op.drop_table("virtual_trades")
    op.drop_table("orders")
    op.drop_table("decisions")
    op.drop_table("positions")
    op.drop_table("strategy_sessions")
    op.drop_table("accounts")
    op.drop_table("strategies")
