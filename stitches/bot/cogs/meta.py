"""
stitches.bot.cogs.meta — Profile & Leaderboard Commands
=======================================================

Hybrid commands for members:
- /profile — streak, level, XP and weekly message count
- /leaderboard — top members for any tracked metric
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from stitches.database.engine import run_db
from stitches.engine.state import Metric
from stitches.services.embeds import METRIC_LABELS, build_leaderboard_embed, build_profile_embed
from stitches.services.leaderboard_service import DEFAULT_LIMIT, query_leaderboard

if TYPE_CHECKING:
    from stitches.bot.core import StitchesBot

METRIC_CHOICES = [
    app_commands.Choice(name=METRIC_LABELS[metric], value=metric.value) for metric in Metric
]


class Meta(commands.Cog, name="Meta"):
    """Profiles and leaderboards."""

    def __init__(self, bot: StitchesBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /profile
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="profile",
        description="View your (or another member's) streak and level.",
    )
    @commands.guild_only()
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def profile(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        assert ctx.guild is not None
        target = member or ctx.author

        state = await run_db(self.bot.store.get_user, ctx.guild.id, target.id)
        if state is None:
            await ctx.send(
                f"\U0001f50d **{target.display_name}** hasn't sent any tracked messages yet.",
                ephemeral=True,
            )
            return

        config = await run_db(self.bot.guild_configs.get_config, ctx.guild.id)
        embed = build_profile_embed(target.display_name, target.display_avatar.url, state, config)
        embed.set_footer(text=f"{ctx.guild.name} | {self.bot.cfg.bot_name}")
        await ctx.send(embed=embed)

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="leaderboard",
        description="View the top members for a metric.",
    )
    @commands.guild_only()
    @app_commands.describe(metric="What to rank by", limit="How many members to show (1-50)")
    @app_commands.choices(metric=METRIC_CHOICES)
    async def leaderboard(
        self,
        ctx: commands.Context,
        metric: str = Metric.STREAK.value,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        assert ctx.guild is not None
        parsed = Metric.parse(metric)
        if parsed is None:
            await ctx.send(f"❌ Unknown metric `{metric}`.", ephemeral=True)
            return

        rows = await run_db(query_leaderboard, self.bot.store, ctx.guild.id, parsed.value, limit)
        if not rows:
            await ctx.send(
                "No data yet! Start chatting to appear on the leaderboard.",
                ephemeral=True,
            )
            return

        await ctx.send(embed=build_leaderboard_embed(ctx.guild.name, parsed, rows))


async def setup(bot: StitchesBot) -> None:
    await bot.add_cog(Meta(bot))
