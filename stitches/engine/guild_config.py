"""
stitches.engine.guild_config — Typed view over per-guild configuration
=======================================================================

Guild configuration is stored as a loosely-structured JSON document (the
shape admins edit).  :class:`GuildConfig` parses it once into frozen,
typed sections.  Any missing section means "subsystem disabled"; any
missing or malformed number falls back to its default.  Parsing never
raises.

Recognized document shape::

    {
      "streakSystem": {"enabled": true, "streakThreshold": 10,
                       "role7day": "1234", "channelStreakOutput": "5678"},
      "levelSystem": {"enabled": true, "xpPerMessage": 10,
                      "levelMultiplier": 1.5, "roleLevel5": "4321",
                      "channelLevelUp": "8765", "levelUpMessages": true},
      "messageLeaderSystem": {"enabled": true, "channelMessageLeader": "…",
                              "roleMessageLeader": "…"},
      "reportSettings": {"weeklyReportChannel": "…",
                         "monthlyReportChannel": "…"}
    }
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from stitches.constants import (
    DEFAULT_BASE_XP,
    DEFAULT_LEVEL_MULTIPLIER,
    DEFAULT_STREAK_THRESHOLD,
    DEFAULT_XP_PER_MESSAGE,
)

_STREAK_ROLE_RE = re.compile(r"^role(\d+)day$")
_LEVEL_ROLE_RE = re.compile(r"^roleLevel(\d+)$")


# ---------------------------------------------------------------------------
# Safe scalar parsing
# ---------------------------------------------------------------------------
def safe_float(value: Any, default: float) -> float:
    """Parse a finite number; anything else (including nan and inf) is *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return parsed if math.isfinite(parsed) else default


def safe_int(value: Any, default: int) -> int:
    parsed = safe_float(value, math.nan)
    return int(parsed) if math.isfinite(parsed) else default


def safe_positive_float(value: Any, default: float) -> float:
    parsed = safe_float(value, default)
    return parsed if parsed > 0 else default


def safe_snowflake(value: Any) -> int | None:
    """Parse a Discord id stored as str or int; blanks become None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return parsed if parsed > 0 else None


def _bindings(section: Mapping[str, Any], pattern: re.Pattern[str]) -> dict[int, int]:
    """Collect ``{N: role_id}`` for keys matching *pattern*."""
    found: dict[int, int] = {}
    for key, value in section.items():
        m = pattern.match(key)
        if not m:
            continue
        role_id = safe_snowflake(value)
        if role_id is not None:
            found[int(m.group(1))] = role_id
    return found


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakSettings:
    enabled: bool = False
    streak_threshold: int = DEFAULT_STREAK_THRESHOLD
    milestone_roles: dict[int, int] = field(default_factory=dict)  # days → role id
    output_channel_id: int | None = None

    def roles_up_to(self, streak: int) -> list[int]:
        """Role ids bound to any milestone of ``streak`` days or fewer."""
        return [
            role_id
            for days, role_id in sorted(self.milestone_roles.items())
            if days <= streak
        ]


@dataclass(frozen=True, slots=True)
class LevelSettings:
    enabled: bool = False
    xp_per_message: int = DEFAULT_XP_PER_MESSAGE
    level_multiplier: float = DEFAULT_LEVEL_MULTIPLIER
    base_xp: int = DEFAULT_BASE_XP
    level_roles: dict[int, int] = field(default_factory=dict)  # level → role id
    level_up_channel_id: int | None = None
    level_up_messages: bool = True


@dataclass(frozen=True, slots=True)
class LeaderSettings:
    enabled: bool = False
    channel_id: int | None = None
    role_id: int | None = None


@dataclass(frozen=True, slots=True)
class ReportSettings:
    weekly_channel_id: int | None = None
    monthly_channel_id: int | None = None


@dataclass(frozen=True, slots=True)
class GuildConfig:
    """Parsed, read-only guild configuration."""

    guild_id: int
    streak: StreakSettings = field(default_factory=StreakSettings)
    level: LevelSettings = field(default_factory=LevelSettings)
    leader: LeaderSettings = field(default_factory=LeaderSettings)
    reports: ReportSettings = field(default_factory=ReportSettings)

    @classmethod
    def from_dict(cls, guild_id: int, raw: Mapping[str, Any] | None) -> GuildConfig:
        raw = raw if isinstance(raw, Mapping) else {}

        streak_raw = raw.get("streakSystem")
        streak_raw = streak_raw if isinstance(streak_raw, Mapping) else {}
        level_raw = raw.get("levelSystem")
        level_raw = level_raw if isinstance(level_raw, Mapping) else {}
        leader_raw = raw.get("messageLeaderSystem")
        leader_raw = leader_raw if isinstance(leader_raw, Mapping) else {}
        report_raw = raw.get("reportSettings")
        report_raw = report_raw if isinstance(report_raw, Mapping) else {}

        streak = StreakSettings(
            enabled=streak_raw.get("enabled") is True,
            streak_threshold=max(
                safe_int(streak_raw.get("streakThreshold"), DEFAULT_STREAK_THRESHOLD), 0
            ),
            milestone_roles=_bindings(streak_raw, _STREAK_ROLE_RE),
            output_channel_id=safe_snowflake(streak_raw.get("channelStreakOutput")),
        )
        level = LevelSettings(
            enabled=level_raw.get("enabled") is True,
            xp_per_message=max(
                safe_int(level_raw.get("xpPerMessage"), DEFAULT_XP_PER_MESSAGE), 0
            ),
            level_multiplier=safe_positive_float(
                level_raw.get("levelMultiplier"), DEFAULT_LEVEL_MULTIPLIER
            ),
            base_xp=max(safe_int(level_raw.get("baseXp"), DEFAULT_BASE_XP), 1),
            level_roles=_bindings(level_raw, _LEVEL_ROLE_RE),
            level_up_channel_id=safe_snowflake(level_raw.get("channelLevelUp")),
            level_up_messages=level_raw.get("levelUpMessages") is not False,
        )
        leader = LeaderSettings(
            enabled=leader_raw.get("enabled") is True,
            channel_id=safe_snowflake(leader_raw.get("channelMessageLeader")),
            role_id=safe_snowflake(leader_raw.get("roleMessageLeader")),
        )
        reports = ReportSettings(
            weekly_channel_id=safe_snowflake(report_raw.get("weeklyReportChannel")),
            monthly_channel_id=safe_snowflake(report_raw.get("monthlyReportChannel")),
        )
        return cls(
            guild_id=guild_id,
            streak=streak,
            level=level,
            leader=leader,
            reports=reports,
        )


def ensure_config_structure(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of *raw* with every top-level section present.

    New sections are created disabled with default tunables; existing keys
    are never overwritten.
    """
    config: dict[str, Any] = copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else {}
    config.setdefault(
        "streakSystem", {"enabled": False, "streakThreshold": DEFAULT_STREAK_THRESHOLD}
    )
    config.setdefault("messageLeaderSystem", {"enabled": False})
    config.setdefault(
        "levelSystem",
        {
            "enabled": False,
            "xpPerMessage": DEFAULT_XP_PER_MESSAGE,
            "levelMultiplier": DEFAULT_LEVEL_MULTIPLIER,
        },
    )
    config.setdefault(
        "reportSettings", {"weeklyReportChannel": "", "monthlyReportChannel": ""}
    )
    return config
