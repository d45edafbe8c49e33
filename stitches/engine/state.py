"""
stitches.engine.state — UserProgressionState and the Metric index set
=======================================================================

The in-memory shape of one user's engagement record in one guild.  Engine
functions mutate a state object in place; services load it from and save
it to a :class:`~stitches.services.record_store.RecordStore`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date

__all__ = [
    "Experience",
    "HeatmapEntry",
    "LastMessage",
    "Metric",
    "Milestone",
    "UserProgressionState",
]


class Metric(enum.StrEnum):
    """Closed set of metrics projected into the leaderboard index."""
    STREAK = "streak"
    MESSAGES = "messages"
    HIGHEST_STREAK = "highestStreak"
    MESSAGE_LEADER_WINS = "messageLeaderWins"
    LEVEL = "level"
    TOTAL_XP = "totalXp"
    ACTIVE_DAYS_COUNT = "activeDaysCount"
    LONGEST_INACTIVE_PERIOD = "longestInactivePeriod"
    MOST_CONSECUTIVE_LEADER = "mostConsecutiveLeader"
    AVERAGE_MESSAGES_PER_DAY = "averageMessagesPerDay"
    TOTAL_MESSAGES = "totalMessages"

    @classmethod
    def parse(cls, name: str) -> Metric | None:
        """Return the matching metric, or None for unknown names."""
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(slots=True)
class Experience:
    total_xp: int = 0
    level: int = 0


@dataclass(slots=True)
class HeatmapEntry:
    date: str  # ISO date, UTC
    messages: int = 0


@dataclass(slots=True)
class Milestone:
    milestone: int
    date: str  # ISO timestamp


@dataclass(slots=True)
class LastMessage:
    time: float = 0.0  # epoch milliseconds
    content: str = ""
    date: str | None = None


@dataclass(slots=True)
class UserProgressionState:
    """One user's engagement record within one guild.

    Invariant: ``highest_streak >= streak`` after every engine call.
    """

    streak: int = 0
    highest_streak: int = 0
    threshold: int = 10
    received_daily: bool = False
    messages: int = 0
    total_messages: int = 0
    experience: Experience = field(default_factory=Experience)
    boosters: float = 1.0
    message_leader_wins: int = 0
    consecutive_leader_weeks: int = 0
    most_consecutive_leader: int = 0
    active_days_count: int = 0
    consecutive_inactive_days: int = 0
    longest_inactive_period: int = 0
    days_tracked: int = 0
    average_messages_per_day: float = 0.0
    message_heatmap: list[HeatmapEntry] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)
    roles_achieved: list[int] = field(default_factory=list)
    channels_participated: list[int] = field(default_factory=list)
    last_message: LastMessage = field(default_factory=LastMessage)
    last_streak_loss: str | None = None
    last_daily_rollover: str | None = None

    @classmethod
    def new(cls, threshold: int) -> UserProgressionState:
        """A fresh record with the guild's configured daily threshold."""
        return cls(threshold=max(threshold, 0))

    # -------------------------------------------------------------------
    # Heatmap helpers
    # -------------------------------------------------------------------
    def heatmap_entry(self, day: date) -> HeatmapEntry | None:
        key = day.isoformat()
        for entry in self.message_heatmap:
            if entry.date == key:
                return entry
        return None

    def messages_on(self, day: date) -> int:
        entry = self.heatmap_entry(day)
        return entry.messages if entry else 0

    # -------------------------------------------------------------------
    # Metric projection
    # -------------------------------------------------------------------
    def metric_value(self, metric: Metric) -> float:
        """Current value of *metric* on this record."""
        match metric:
            case Metric.STREAK:
                return self.streak
            case Metric.MESSAGES:
                return self.messages
            case Metric.HIGHEST_STREAK:
                return self.highest_streak
            case Metric.MESSAGE_LEADER_WINS:
                return self.message_leader_wins
            case Metric.LEVEL:
                return self.experience.level
            case Metric.TOTAL_XP:
                return self.experience.total_xp
            case Metric.ACTIVE_DAYS_COUNT:
                return self.active_days_count
            case Metric.LONGEST_INACTIVE_PERIOD:
                return self.longest_inactive_period
            case Metric.MOST_CONSECUTIVE_LEADER:
                return self.most_consecutive_leader
            case Metric.AVERAGE_MESSAGES_PER_DAY:
                return self.average_messages_per_day
            case Metric.TOTAL_MESSAGES:
                return self.total_messages
        raise ValueError(f"Unknown metric: {metric!r}")

    def metric_values(self) -> dict[Metric, float]:
        return {m: self.metric_value(m) for m in Metric}
