"""
stitches.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- user_progress     — One engagement record per (guild, user)
- metric_index      — Denormalized (guild, metric, user) → value projection
                      used for ranked leaderboard reads
- guild_configs     — Per-guild gameplay configuration (JSONB document)
- scheduled_jobs    — Persistent next-run timestamps for rollover jobs
- rollover_markers  — Completed (guild, job, period) rollovers
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Stitches ORM models."""


# ---------------------------------------------------------------------------
# UserProgress — one row per member per guild
# ---------------------------------------------------------------------------
class UserProgress(Base):
    """Primary engagement record for one user in one guild.

    Scalar counters are real columns so the weekly reset can be issued as a
    plain ``UPDATE``; list-shaped history lives in JSONB columns.
    """
    __tablename__ = "user_progress"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    # Streaks
    streak: Mapped[int] = mapped_column(Integer, default=0)
    highest_streak: Mapped[int] = mapped_column(Integer, default=0)
    threshold: Mapped[int] = mapped_column(Integer, default=10)
    received_daily: Mapped[bool] = mapped_column(Boolean, default=False)
    last_streak_loss: Mapped[str | None] = mapped_column(String(40), default=None)
    last_daily_rollover: Mapped[str | None] = mapped_column(String(10), default=None)

    # Messages
    messages: Mapped[int] = mapped_column(Integer, default=0)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)

    # Levels
    total_xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=0)
    boosters: Mapped[float] = mapped_column(Float, default=1.0)

    # Message leader competition
    message_leader_wins: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_leader_weeks: Mapped[int] = mapped_column(Integer, default=0)
    most_consecutive_leader: Mapped[int] = mapped_column(Integer, default=0)

    # Activity analytics
    active_days_count: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_inactive_days: Mapped[int] = mapped_column(Integer, default=0)
    longest_inactive_period: Mapped[int] = mapped_column(Integer, default=0)
    days_tracked: Mapped[int] = mapped_column(Integer, default=0)
    average_messages_per_day: Mapped[float] = mapped_column(Float, default=0.0)

    # History
    message_heatmap: Mapped[list] = mapped_column(JSONB, default=list)
    milestones: Mapped[list] = mapped_column(JSONB, default=list)
    roles_achieved: Mapped[list] = mapped_column(JSONB, default=list)
    channels_participated: Mapped[list] = mapped_column(JSONB, default=list)
    last_message: Mapped[dict] = mapped_column(JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<UserProgress guild={self.guild_id} user={self.user_id} "
            f"streak={self.streak} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# MetricIndex — ranked projection for leaderboards
# ---------------------------------------------------------------------------
class MetricIndex(Base):
    """Denormalized projection of one tracked metric for one user.

    Written alongside :class:`UserProgress` in a separate transaction, so
    the two may briefly disagree after a partial failure.
    """
    __tablename__ = "metric_index"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    metric: Mapped[str] = mapped_column(String(40), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_metric_index_rank", "guild_id", "metric", "value"),
    )

    def __repr__(self) -> str:
        return (
            f"<MetricIndex guild={self.guild_id} metric={self.metric!r} "
            f"user={self.user_id} value={self.value}>"
        )


# ---------------------------------------------------------------------------
# GuildConfigRecord — per-guild gameplay configuration
# ---------------------------------------------------------------------------
class GuildConfigRecord(Base):
    __tablename__ = "guild_configs"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildConfigRecord guild={self.guild_id}>"


# ---------------------------------------------------------------------------
# ScheduledJob — persistent next-run timestamps
# ---------------------------------------------------------------------------
class ScheduledJob(Base):
    """One row per rollover job.  The scheduler loop reads ``next_run_at``
    on every wake and recomputes it after each run."""
    __tablename__ = "scheduled_jobs"

    name: Mapped[str] = mapped_column(String(40), primary_key=True)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_status: Mapped[str | None] = mapped_column(String(20), default=None)

    def __repr__(self) -> str:
        return f"<ScheduledJob name={self.name!r} next={self.next_run_at}>"


# ---------------------------------------------------------------------------
# RolloverMarker — completed guild-level rollovers
# ---------------------------------------------------------------------------
class RolloverMarker(Base):
    __tablename__ = "rollover_markers"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    job: Mapped[str] = mapped_column(String(40), primary_key=True)
    period: Mapped[str] = mapped_column(String(20), primary_key=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<RolloverMarker guild={self.guild_id} job={self.job!r} period={self.period!r}>"
