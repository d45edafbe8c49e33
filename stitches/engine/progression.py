"""
stitches.engine.progression — Per-message progression rules
============================================================

Pure rules that turn one accepted message into state deltas.
No Discord I/O, no DB I/O inside the engine.

Stages::

    message → Level (XP, one level-up max) → Streak (daily credit)
            → Activity (counters, heatmap, last message) → ProgressionOutcome

The caller persists the mutated :class:`UserProgressionState` and turns the
returned :class:`ProgressionOutcome` into role grants and announcements.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from stitches.constants import (
    CHANNELS_TRACKED,
    HEATMAP_DAYS,
    LAST_MESSAGE_CHARS,
    xp_for_level,
)
from stitches.engine.guild_config import GuildConfig, LevelSettings, StreakSettings
from stitches.engine.state import HeatmapEntry, LastMessage, Milestone, UserProgressionState

__all__ = [
    "LevelUp",
    "ProgressionOutcome",
    "StreakCredit",
    "add_heatmap_messages",
    "apply_level",
    "apply_message",
    "apply_streak",
]


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LevelUp:
    old_level: int
    new_level: int
    role_id: int | None = None
    announce: bool = True


@dataclass(frozen=True, slots=True)
class StreakCredit:
    old_streak: int
    new_streak: int
    milestone_days: int | None = None
    milestone_role_id: int | None = None


@dataclass
class ProgressionOutcome:
    """Side effects the caller should perform after persisting."""

    xp_gained: int = 0
    level_up: LevelUp | None = None
    streak_credit: StreakCredit | None = None
    roles_to_grant: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Heatmap
# ---------------------------------------------------------------------------
def add_heatmap_messages(state: UserProgressionState, day: date, count: int) -> None:
    """Add *count* messages to *day*'s bucket, creating it if absent.

    ``count=0`` just guarantees the bucket exists.  The heatmap is kept in
    date order and trimmed to the newest :data:`HEATMAP_DAYS` entries.
    """
    entry = state.heatmap_entry(day)
    if entry is not None:
        entry.messages += count
        return
    state.message_heatmap.append(HeatmapEntry(date=day.isoformat(), messages=count))
    state.message_heatmap.sort(key=lambda e: e.date)
    if len(state.message_heatmap) > HEATMAP_DAYS:
        del state.message_heatmap[: len(state.message_heatmap) - HEATMAP_DAYS]


# ---------------------------------------------------------------------------
# Stage 1: Level
# ---------------------------------------------------------------------------
def apply_level(state: UserProgressionState, settings: LevelSettings) -> tuple[int, LevelUp | None]:
    """Add message XP and apply at most one level-up.

    Even when the gain covers several levels' requirements only one level
    is granted per message; the surplus XP carries forward.
    """
    gain = math.floor(settings.xp_per_message * state.boosters)
    if gain <= 0:
        return 0, None

    exp = state.experience
    exp.total_xp += gain
    required = xp_for_level(exp.level, settings.level_multiplier, settings.base_xp)
    if exp.total_xp < required:
        return gain, None

    old_level = exp.level
    exp.level += 1
    exp.total_xp = max(exp.total_xp - required, 0)
    role_id = settings.level_roles.get(exp.level)
    if role_id is not None and role_id not in state.roles_achieved:
        state.roles_achieved.append(role_id)
    return gain, LevelUp(
        old_level=old_level,
        new_level=exp.level,
        role_id=role_id,
        announce=settings.level_up_messages,
    )


# ---------------------------------------------------------------------------
# Stage 2: Streak
# ---------------------------------------------------------------------------
def apply_streak(
    state: UserProgressionState, settings: StreakSettings, now: datetime
) -> StreakCredit | None:
    """Count one message toward today's threshold; grant the daily credit
    at most once per day."""
    state.threshold = max(state.threshold - 1, 0)
    if state.threshold != 0 or state.received_daily:
        return None

    old_streak = state.streak
    state.streak += 1
    state.received_daily = True
    state.highest_streak = max(state.highest_streak, state.streak)

    role_id = settings.milestone_roles.get(state.streak)
    if role_id is None:
        return StreakCredit(old_streak, state.streak)

    state.milestones.append(Milestone(milestone=state.streak, date=now.isoformat()))
    if role_id not in state.roles_achieved:
        state.roles_achieved.append(role_id)
    return StreakCredit(
        old_streak,
        state.streak,
        milestone_days=state.streak,
        milestone_role_id=role_id,
    )


# ---------------------------------------------------------------------------
# Stage 3: Activity
# ---------------------------------------------------------------------------
def _apply_activity(
    state: UserProgressionState, channel_id: int, content: str, now: datetime
) -> None:
    state.messages += 1
    state.total_messages += 1
    today = now.astimezone(timezone.utc).date()
    add_heatmap_messages(state, today, 1)
    state.last_message = LastMessage(
        time=now.timestamp() * 1000,
        content=content[:LAST_MESSAGE_CHARS],
        date=today.isoformat(),
    )
    if channel_id not in state.channels_participated:
        state.channels_participated.append(channel_id)
        del state.channels_participated[:-CHANNELS_TRACKED]


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------
def apply_message(
    state: UserProgressionState,
    config: GuildConfig,
    *,
    channel_id: int,
    content: str,
    now: datetime,
) -> ProgressionOutcome:
    """Apply one accepted message to *state* in place.

    This is a PURE function apart from mutating *state*; *now* must be
    timezone-aware.
    """
    outcome = ProgressionOutcome()

    if config.level.enabled:
        outcome.xp_gained, outcome.level_up = apply_level(state, config.level)
        if outcome.level_up and outcome.level_up.role_id is not None:
            outcome.roles_to_grant.append(outcome.level_up.role_id)

    if config.streak.enabled:
        outcome.streak_credit = apply_streak(state, config.streak, now)
        credit = outcome.streak_credit
        if credit and credit.milestone_role_id is not None:
            outcome.roles_to_grant.append(credit.milestone_role_id)

    _apply_activity(state, channel_id, content, now)
    return outcome
