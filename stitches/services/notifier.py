"""
stitches.services.notifier — Side-effect port for the progression core
=======================================================================

The ingestion and rollover services hand structured results to a
:class:`Notifier`; they never talk to Discord directly.  Every method is
best-effort: implementations log their own delivery failures and callers
additionally guard each call so a notifier error never fails a message or
a rollover.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from stitches.engine.guild_config import GuildConfig
from stitches.engine.progression import LevelUp, StreakCredit
from stitches.engine.rollover import LeaderEntry, MonthlyReport, WeeklyReport


@runtime_checkable
class Notifier(Protocol):
    async def grant_role(
        self, guild_id: int, user_id: int, role_id: int, reason: str
    ) -> None: ...

    async def revoke_roles(
        self, guild_id: int, user_id: int, role_ids: Sequence[int], reason: str
    ) -> None: ...

    async def set_leader_role(
        self, guild_id: int, role_id: int, winner_ids: Sequence[int]
    ) -> None:
        """Remove *role_id* from current holders, then give it to *winner_ids*."""

    async def level_up(
        self,
        config: GuildConfig,
        user_id: int,
        event: LevelUp,
        fallback_channel_id: int | None = None,
    ) -> None: ...

    async def streak_increased(
        self,
        config: GuildConfig,
        user_id: int,
        credit: StreakCredit,
        fallback_channel_id: int | None = None,
    ) -> None: ...

    async def streak_lost(self, guild_id: int, user_id: int, old_streak: int) -> None:
        """Direct-message the user about a lost streak."""

    async def weekly_leaders(
        self, config: GuildConfig, leaders: Sequence[LeaderEntry]
    ) -> None: ...

    async def weekly_report(self, config: GuildConfig, report: WeeklyReport) -> None: ...

    async def monthly_report(self, config: GuildConfig, report: MonthlyReport) -> None: ...
