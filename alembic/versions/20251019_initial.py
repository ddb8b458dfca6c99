"""
Initial schema for the rapid-drop pattern store.

Creates the backtest run table, the event table shared by live and
backtest events, and the per-event price point table.  They correspond
to the SQLAlchemy metadata defined in ``patterns/src/patterns/db_store.py``.

Revision ID: 20251019_initial
Revises:
Create Date: 2025-10-19
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20251019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create backtest_runs, drop_events and drop_price_points."""
    op.create_table(
        "backtest_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("from_time", sa.BigInteger(), nullable=False),
        sa.Column("to_time", sa.BigInteger(), nullable=False),
        sa.Column("window_seconds", sa.Integer(), nullable=False),
        sa.Column("drop_percent", sa.Float(), nullable=False),
        sa.Column("record_after_seconds", sa.Integer(), nullable=False),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=False),
        sa.Column("events_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("profitable_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_max_profit", sa.Float()),
        sa.Column("median_max_profit", sa.Float()),
        sa.Column("avg_max_drawdown", sa.Float()),
        sa.Column("median_max_drawdown", sa.Float()),
        sa.Column("max_max_drawdown", sa.Float()),
        sa.Column("avg_time_to_breakeven", sa.Float()),
        sa.Column("median_time_to_breakeven", sa.Float()),
        sa.Column("avg_time_to_max_profit", sa.Float()),
        sa.Column("avg_end_result", sa.Float()),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint(
            "symbol",
            "from_time",
            "to_time",
            "window_seconds",
            "drop_percent",
            "record_after_seconds",
            "cooldown_seconds",
            name="uq_backtest_runs_period_config",
        ),
    )
    op.create_table(
        "drop_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("run_id", sa.String(36), sa.ForeignKey("backtest_runs.id"), nullable=True),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("trigger_price", sa.Float(), nullable=False),
        sa.Column("trigger_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("window_high", sa.Float(), nullable=False),
        sa.Column("drop_percent", sa.Float(), nullable=False),
        sa.Column("config_drop_percent", sa.Float(), nullable=False),
        sa.Column("lowest_price", sa.Float(), nullable=False),
        sa.Column("lowest_price_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("window_seconds", sa.Integer(), nullable=False),
    )
    op.create_index("drop_events_run_id_idx", "drop_events", ["run_id"])
    op.create_table(
        "drop_price_points",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("drop_events.id"), nullable=False),
        sa.Column("phase", sa.Enum("before", "after", name="price_point_phase"), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
    )
    op.create_index(
        "drop_price_points_event_phase_idx", "drop_price_points", ["event_id", "phase"]
    )


def downgrade() -> None:
    """Drop the pattern store tables."""
    op.drop_index("drop_price_points_event_phase_idx", table_name="drop_price_points")
    op.drop_table("drop_price_points")
    op.drop_index("drop_events_run_id_idx", table_name="drop_events")
    op.drop_table("drop_events")
    op.drop_table("backtest_runs")
    sa.Enum(name="price_point_phase").drop(op.get_bind(), checkfirst=True)
