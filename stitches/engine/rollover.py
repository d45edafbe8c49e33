"""
stitches.engine.rollover — Daily, weekly and monthly rollover rules
====================================================================

Pure per-user transitions and per-guild aggregations driven by the
scheduler.  No Discord I/O, no DB I/O inside the engine.

- :func:`apply_daily_rollover` closes the previous UTC day for one user
  (activity analytics, streak expiry, threshold reset).  Idempotent per
  user per day via ``last_daily_rollover``.
- :func:`rank_message_leaders` / :func:`apply_leader_result` implement the
  weekly message-leader competition.
- :func:`build_weekly_report` / :func:`build_monthly_report` aggregate a
  guild scan into report payloads without mutating state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from stitches.engine.guild_config import GuildConfig
from stitches.engine.progression import add_heatmap_messages
from stitches.engine.state import UserProgressionState

logger = logging.getLogger(__name__)


def utc_day(now: datetime) -> date:
    return now.astimezone(timezone.utc).date()


def iso_week(now: datetime) -> str:
    """Period key for weekly jobs, e.g. ``2026-W42``."""
    year, week, _ = utc_day(now).isocalendar()
    return f"{year}-W{week:02d}"


# ---------------------------------------------------------------------------
# Daily
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DailyRolloverOutcome:
    """What happened to one user.  ``applied`` is False for a repeat run."""

    applied: bool
    lost_streak: int = 0
    roles_to_revoke: tuple[int, ...] = ()

    @property
    def streak_lost(self) -> bool:
        return self.lost_streak > 0


def apply_daily_rollover(
    state: UserProgressionState, config: GuildConfig, now: datetime
) -> DailyRolloverOutcome:
    """Close the previous UTC day for *state* in place.

    A second call on the same UTC day is a no-op.
    """
    today = utc_day(now)
    if state.last_daily_rollover == today.isoformat():
        return DailyRolloverOutcome(applied=False)

    # Activity analytics for the day that just ended
    yesterday = today - timedelta(days=1)
    if state.messages_on(yesterday) > 0:
        state.active_days_count += 1
        state.consecutive_inactive_days = 0
    else:
        state.consecutive_inactive_days += 1
    state.longest_inactive_period = max(
        state.longest_inactive_period, state.consecutive_inactive_days
    )
    add_heatmap_messages(state, today, 0)

    # Streak expiry
    lost = 0
    revoke: tuple[int, ...] = ()
    if config.streak.enabled and state.streak > 0 and not state.received_daily:
        lost = state.streak
        state.streak = 0
        state.last_streak_loss = now.isoformat()
        revoke = tuple(config.streak.roles_up_to(lost))
        if revoke:
            state.roles_achieved = [r for r in state.roles_achieved if r not in revoke]

    state.received_daily = False
    state.threshold = config.streak.streak_threshold

    state.days_tracked += 1
    state.average_messages_per_day = round(state.total_messages / state.days_tracked, 4)
    state.last_daily_rollover = today.isoformat()

    return DailyRolloverOutcome(applied=True, lost_streak=lost, roles_to_revoke=revoke)


# ---------------------------------------------------------------------------
# Weekly message leaders
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LeaderEntry:
    rank: int
    user_id: int
    messages: int


def rank_message_leaders(
    users: Iterable[tuple[int, UserProgressionState]], top_n: int = 5
) -> list[LeaderEntry]:
    """Top *top_n* users by weekly ``messages``; ties break on user id.

    Users with zero messages never place.
    """
    candidates = sorted(
        ((uid, s.messages) for uid, s in users if s.messages > 0),
        key=lambda item: (-item[1], item[0]),
    )
    return [
        LeaderEntry(rank=i, user_id=uid, messages=count)
        for i, (uid, count) in enumerate(candidates[: max(top_n, 0)], start=1)
    ]


def apply_leader_result(state: UserProgressionState, *, won: bool) -> None:
    if won:
        state.message_leader_wins += 1
        state.consecutive_leader_weeks += 1
        state.most_consecutive_leader = max(
            state.most_consecutive_leader, state.consecutive_leader_weeks
        )
    else:
        state.consecutive_leader_weeks = 0


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WeeklyReport:
    guild_id: int
    total_messages: int = 0
    active_users: int = 0
    average_per_active_user: float = 0.0
    highest_streak: int = 0
    users_with_streaks: int = 0
    average_streak: float = 0.0
    highest_level: int = 0
    top_messagers: list[tuple[int, float]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MonthlyReport:
    guild_id: int
    total_lifetime_messages: int = 0
    tracked_users: int = 0
    active_users: int = 0
    average_lifetime_messages: float = 0.0
    highest_streak_all_time: int = 0
    highest_level_all_time: int = 0
    total_leader_wins: int = 0
    top_streaks: list[tuple[int, float]] = field(default_factory=list)


def build_weekly_report(
    guild_id: int,
    users: Iterable[tuple[int, UserProgressionState]],
    top_messagers: list[tuple[int, float]] | None = None,
) -> WeeklyReport:
    total = active = streak_sum = with_streak = highest_streak = highest_level = 0
    for _uid, s in users:
        total += s.messages
        if s.messages > 0:
            active += 1
        if s.streak > 0:
            streak_sum += s.streak
            with_streak += 1
        highest_streak = max(highest_streak, s.highest_streak)
        highest_level = max(highest_level, s.experience.level)

    return WeeklyReport(
        guild_id=guild_id,
        total_messages=total,
        active_users=active,
        average_per_active_user=round(total / active, 2) if active else 0.0,
        highest_streak=highest_streak,
        users_with_streaks=with_streak,
        average_streak=round(streak_sum / with_streak, 2) if with_streak else 0.0,
        highest_level=highest_level,
        top_messagers=list(top_messagers or []),
    )


def build_monthly_report(
    guild_id: int,
    users: Iterable[tuple[int, UserProgressionState]],
    *,
    active_since: date,
    top_streaks: list[tuple[int, float]] | None = None,
) -> MonthlyReport:
    """Lifetime aggregates.  A user counts as active when any heatmap
    bucket on or after *active_since* has messages."""
    since = active_since.isoformat()
    total = tracked = active = wins = highest_streak = highest_level = 0
    for _uid, s in users:
        tracked += 1
        total += s.total_messages
        wins += s.message_leader_wins
        highest_streak = max(highest_streak, s.highest_streak)
        highest_level = max(highest_level, s.experience.level)
        if any(e.date >= since and e.messages > 0 for e in s.message_heatmap):
            active += 1

    return MonthlyReport(
        guild_id=guild_id,
        total_lifetime_messages=total,
        tracked_users=tracked,
        active_users=active,
        average_lifetime_messages=round(total / tracked, 2) if tracked else 0.0,
        highest_streak_all_time=highest_streak,
        highest_level_all_time=highest_level,
        total_leader_wins=wins,
        top_streaks=list(top_streaks or []),
    )
