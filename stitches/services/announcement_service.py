"""
stitches.services.announcement_service — Discord notifier
==========================================================

:class:`DiscordNotifier` implements the
:class:`~stitches.services.notifier.Notifier` port on top of a
``discord.Client``: role grants and removals, streak/level celebrations,
the weekly leader announcement, reports, and streak-loss DMs.

Channel resolution: the configured channel for the event type, else the
channel the triggering message came from, else nothing.  Every Discord
failure is caught and logged here; nothing propagates to the core.

Embed construction lives in :mod:`stitches.services.embeds`.
Throttle logic lives in :mod:`stitches.services.throttle`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import discord
from discord.abc import Messageable

from stitches.engine.guild_config import GuildConfig
from stitches.engine.progression import LevelUp, StreakCredit
from stitches.engine.rollover import LeaderEntry, MonthlyReport, WeeklyReport
from stitches.services.embeds import (
    build_leaders_embed,
    build_level_up_embed,
    build_monthly_report_embed,
    build_streak_embed,
    build_weekly_report_embed,
    streak_lost_text,
)
from stitches.services.throttle import AnnouncementThrottle

logger = logging.getLogger(__name__)


class DiscordNotifier:
    """Best-effort Discord side effects for the progression core."""

    def __init__(
        self, client: discord.Client, throttle: AnnouncementThrottle | None = None
    ) -> None:
        self.client = client
        self.throttle = throttle or AnnouncementThrottle()

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the announcement throttle drain task.  Call from on_ready."""
        self.throttle.start(loop)

    def stop(self) -> None:
        self.throttle.stop()

    # -------------------------------------------------------------------
    # Resolution helpers
    # -------------------------------------------------------------------
    def _channel(self, *candidates: int | None) -> Messageable | None:
        for channel_id in candidates:
            if not channel_id:
                continue
            ch = self.client.get_channel(channel_id)
            if ch is not None and isinstance(ch, Messageable):
                return ch
        return None

    async def _member(self, guild: discord.Guild, user_id: int) -> discord.Member | None:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            logger.warning("Member %s not found in guild %s", user_id, guild.id)
        except discord.HTTPException:
            logger.exception("Failed to fetch member %s in guild %s", user_id, guild.id)
        return None

    def _role_name(self, guild_id: int, role_id: int | None) -> str | None:
        if role_id is None:
            return None
        guild = self.client.get_guild(guild_id)
        role = guild.get_role(role_id) if guild else None
        return role.name if role else None

    def _guild_name(self, guild_id: int) -> str:
        guild = self.client.get_guild(guild_id)
        return guild.name if guild else str(guild_id)

    # -------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------
    async def grant_role(self, guild_id: int, user_id: int, role_id: int, reason: str) -> None:
        guild = self.client.get_guild(guild_id)
        role = guild.get_role(role_id) if guild else None
        if guild is None or role is None:
            logger.warning("Role %s not found in guild %s; skipping grant", role_id, guild_id)
            return
        member = await self._member(guild, user_id)
        if member is None or role in member.roles:
            return
        try:
            await member.add_roles(role, reason=reason)
            logger.info("Granted role %s to %s in guild %s (%s)", role.name, user_id, guild_id, reason)
        except discord.Forbidden:
            logger.warning(
                "Missing permissions to grant role %s in guild %s", role.name, guild_id
            )
        except discord.HTTPException:
            logger.exception("Failed to grant role %s to %s", role_id, user_id)

    async def revoke_roles(
        self, guild_id: int, user_id: int, role_ids: Sequence[int], reason: str
    ) -> None:
        guild = self.client.get_guild(guild_id)
        if guild is None or not role_ids:
            return
        member = await self._member(guild, user_id)
        if member is None:
            return
        held = [r for r in member.roles if r.id in set(role_ids)]
        if not held:
            return
        try:
            await member.remove_roles(*held, reason=reason)
            logger.info(
                "Removed roles %s from %s in guild %s (%s)",
                [r.id for r in held], user_id, guild_id, reason,
            )
        except discord.Forbidden:
            logger.warning(
                "Missing permissions to remove roles %s from %s in guild %s",
                [r.id for r in held], user_id, guild_id,
            )
        except discord.HTTPException:
            logger.exception("Failed to remove roles from %s in guild %s", user_id, guild_id)

    async def set_leader_role(
        self, guild_id: int, role_id: int, winner_ids: Sequence[int]
    ) -> None:
        guild = self.client.get_guild(guild_id)
        role = guild.get_role(role_id) if guild else None
        if guild is None or role is None:
            logger.warning("Leader role %s not found in guild %s", role_id, guild_id)
            return

        winners = set(winner_ids)
        for holder in list(role.members):
            if holder.id in winners:
                continue
            try:
                await holder.remove_roles(role, reason="End of weekly message leader term")
            except discord.HTTPException:
                logger.exception("Failed removing leader role from %s", holder.id)

        for user_id in winner_ids:
            await self.grant_role(guild_id, user_id, role_id, "Weekly Message Leader")

    # -------------------------------------------------------------------
    # Celebrations
    # -------------------------------------------------------------------
    async def level_up(
        self,
        config: GuildConfig,
        user_id: int,
        event: LevelUp,
        fallback_channel_id: int | None = None,
    ) -> None:
        if not event.announce:
            return
        channel = self._channel(config.level.level_up_channel_id, fallback_channel_id)
        if channel is None:
            logger.warning("No channel for level-up announcement in guild %s", config.guild_id)
            return
        embed = build_level_up_embed(
            user_id, event, self._role_name(config.guild_id, event.role_id)
        )
        await self.throttle.send(channel, content=f"<@{user_id}>", embed=embed)

    async def streak_increased(
        self,
        config: GuildConfig,
        user_id: int,
        credit: StreakCredit,
        fallback_channel_id: int | None = None,
    ) -> None:
        channel = self._channel(config.streak.output_channel_id, fallback_channel_id)
        if channel is None:
            logger.warning("No channel for streak announcement in guild %s", config.guild_id)
            return
        embed = build_streak_embed(
            user_id, credit, self._role_name(config.guild_id, credit.milestone_role_id)
        )
        await self.throttle.send(channel, embed=embed)

    async def streak_lost(self, guild_id: int, user_id: int, old_streak: int) -> None:
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            await user.send(streak_lost_text(self._guild_name(guild_id), old_streak))
        except discord.Forbidden:
            logger.debug("User %s does not accept DMs", user_id)
        except discord.HTTPException:
            logger.warning("Failed to DM streak loss to %s", user_id, exc_info=True)

    # -------------------------------------------------------------------
    # Weekly / monthly
    # -------------------------------------------------------------------
    async def weekly_leaders(self, config: GuildConfig, leaders: Sequence[LeaderEntry]) -> None:
        channel = self._channel(config.leader.channel_id)
        if channel is None:
            logger.warning("Leader channel not set or missing in guild %s", config.guild_id)
            return
        embed = build_leaders_embed(self._guild_name(config.guild_id), leaders)
        await self.throttle.send(channel, embed=embed)

    async def weekly_report(self, config: GuildConfig, report: WeeklyReport) -> None:
        channel = self._channel(config.reports.weekly_channel_id)
        if channel is None:
            return
        embed = build_weekly_report_embed(self._guild_name(config.guild_id), report)
        await self.throttle.send(channel, embed=embed)

    async def monthly_report(self, config: GuildConfig, report: MonthlyReport) -> None:
        channel = self._channel(config.reports.monthly_channel_id)
        if channel is None:
            return
        embed = build_monthly_report_embed(self._guild_name(config.guild_id), report)
        await self.throttle.send(channel, embed=embed)
