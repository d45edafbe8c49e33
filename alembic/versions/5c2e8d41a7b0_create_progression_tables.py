"""Create progression, metric index, config and scheduler tables

Revision ID: 5c2e8d41a7b0
Revises:
Create Date: 2026-10-18 09:12:37.104581

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8d41a7b0'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create user_progress, metric_index, guild_configs, scheduled_jobs, rollover_markers."""

    # --- user_progress ---
    op.create_table(
        "user_progress",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("highest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("threshold", sa.Integer, nullable=False, server_default="10"),
        sa.Column("received_daily", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_streak_loss", sa.String(40), nullable=True),
        sa.Column("last_daily_rollover", sa.String(10), nullable=True),
        sa.Column("messages", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_messages", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_xp", sa.Integer, nullable=False, server_default="0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("boosters", sa.Float, nullable=False, server_default="1.0"),
        sa.Column("message_leader_wins", sa.Integer, nullable=False, server_default="0"),
        sa.Column("consecutive_leader_weeks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("most_consecutive_leader", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active_days_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("consecutive_inactive_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_inactive_period", sa.Integer, nullable=False, server_default="0"),
        sa.Column("days_tracked", sa.Integer, nullable=False, server_default="0"),
        sa.Column("average_messages_per_day", sa.Float, nullable=False, server_default="0"),
        sa.Column("message_heatmap", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("milestones", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("roles_achieved", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("channels_participated", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("last_message", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- metric_index ---
    op.create_table(
        "metric_index",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("metric", sa.String(40), primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("value", sa.Float, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_metric_index_rank", "metric_index", ["guild_id", "metric", "value"])

    # --- guild_configs ---
    op.create_table(
        "guild_configs",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("config", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- scheduled_jobs ---
    op.create_table(
        "scheduled_jobs",
        sa.Column("name", sa.String(40), primary_key=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_status", sa.String(20), nullable=True),
    )

    # --- rollover_markers ---
    op.create_table(
        "rollover_markers",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("job", sa.String(40), primary_key=True),
        sa.Column("period", sa.String(20), primary_key=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop all progression tables."""
    op.drop_table("rollover_markers")
    op.drop_table("scheduled_jobs")
    op.drop_table("guild_configs")
    op.drop_index("ix_metric_index_rank", table_name="metric_index")
    op.drop_table("metric_index")
    op.drop_table("user_progress")
