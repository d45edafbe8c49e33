"""
stitches.services.embeds — Discord embed builders
==================================================

All embed construction lives here so the notifier and cogs only need to
supply data — no layout concerns.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import discord

from stitches.constants import RANK_BADGES, xp_for_level
from stitches.engine.guild_config import GuildConfig
from stitches.engine.progression import LevelUp, StreakCredit
from stitches.engine.rollover import LeaderEntry, MonthlyReport, WeeklyReport
from stitches.engine.state import Metric, UserProgressionState

if TYPE_CHECKING:
    from stitches.services.admin_service import DebugSnapshot

METRIC_LABELS: dict[Metric, str] = {
    Metric.STREAK: "Current Streak",
    Metric.MESSAGES: "Messages (Week)",
    Metric.HIGHEST_STREAK: "Highest Streak",
    Metric.MESSAGE_LEADER_WINS: "Message Leader Wins",
    Metric.LEVEL: "Level",
    Metric.TOTAL_XP: "XP",
    Metric.ACTIVE_DAYS_COUNT: "Active Days",
    Metric.LONGEST_INACTIVE_PERIOD: "Longest Inactive Period",
    Metric.MOST_CONSECUTIVE_LEADER: "Most Consecutive Leader Weeks",
    Metric.AVERAGE_MESSAGES_PER_DAY: "Avg Messages / Day",
    Metric.TOTAL_MESSAGES: "Lifetime Messages",
}


def _rank_prefix(rank: int) -> str:
    return RANK_BADGES[rank - 1] if rank <= len(RANK_BADGES) else f"`#{rank}`"


def _format_value(value: float) -> str:
    return f"{value:,.2f}" if value != int(value) else f"{int(value):,}"


def build_level_up_embed(user_id: int, event: LevelUp, role_name: str | None = None) -> discord.Embed:
    """Build a level-up celebration embed with @mention."""
    description = f"\U0001f389 Congrats <@{user_id}>! You reached **Level {event.new_level}**!"
    if role_name:
        description += f"\nYou earned the **{role_name}** role!"
    return discord.Embed(
        title="⚡ Level Up!",
        description=description,
        color=discord.Color.gold(),
    )


def build_streak_embed(
    user_id: int, credit: StreakCredit, role_name: str | None = None
) -> discord.Embed:
    description = (
        f"\U0001f525 <@{user_id}> has increased their message streak to "
        f"**{credit.new_streak}** days!"
    )
    if credit.milestone_days is not None:
        description += (
            f"\n\U0001f3c5 **{credit.milestone_days}-day milestone** reached"
            + (f": they've earned the **{role_name}** role!" if role_name else "!")
        )
    return discord.Embed(
        title="Streak Increased",
        description=description,
        color=discord.Color.orange(),
    )


def streak_lost_text(guild_name: str, old_streak: int) -> str:
    return (
        f"You lost your **{old_streak}-day** message streak in **{guild_name}**. "
        "Send messages today to start a new one!"
    )


def build_leaders_embed(guild_name: str, leaders: Sequence[LeaderEntry]) -> discord.Embed:
    """Weekly message-leader announcement."""
    lines = [
        f"{_rank_prefix(e.rank)} <@{e.user_id}> — **{e.messages:,}** messages"
        for e in leaders
    ]
    embed = discord.Embed(
        title=f"\U0001f3c6 Message Leaders of the Week — {guild_name}",
        description="\n".join(lines) or "No messages this week.",
        color=discord.Color.red(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.set_footer(text="Keep up the great engagement!")
    return embed


def build_weekly_report_embed(guild_name: str, report: WeeklyReport) -> discord.Embed:
    embed = discord.Embed(
        title=f"Weekly Activity Report — {guild_name}",
        description=f"Summary for the week ending {datetime.now(timezone.utc):%Y-%m-%d}",
        color=discord.Color.blue(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Messages Sent (Week)", value=f"{report.total_messages:,}")
    embed.add_field(name="Active Users (Week)", value=str(report.active_users))
    embed.add_field(name="Avg Msgs / Active User", value=f"{report.average_per_active_user:.2f}")
    embed.add_field(name="Highest Streak", value=str(report.highest_streak))
    embed.add_field(name="Users w/ Active Streaks", value=str(report.users_with_streaks))
    embed.add_field(name="Avg Active Streak", value=f"{report.average_streak:.2f}")
    embed.add_field(name="Highest Level", value=str(report.highest_level))
    if report.top_messagers:
        embed.add_field(
            name="Top Messagers (Week)",
            value="\n".join(
                f"{i}. <@{uid}> ({_format_value(v)})"
                for i, (uid, v) in enumerate(report.top_messagers, start=1)
            ),
            inline=False,
        )
    embed.set_footer(text=f"Guild ID: {report.guild_id}")
    return embed


def build_monthly_report_embed(guild_name: str, report: MonthlyReport) -> discord.Embed:
    embed = discord.Embed(
        title=f"Monthly Activity Report — {guild_name}",
        description=f"Summary for {datetime.now(timezone.utc):%B %Y}",
        color=discord.Color.purple(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Total Lifetime Msgs", value=f"{report.total_lifetime_messages:,}")
    embed.add_field(name="Tracked Users", value=str(report.tracked_users))
    embed.add_field(name="Active Users", value=str(report.active_users))
    embed.add_field(name="Avg Lifetime Msgs / User", value=f"{report.average_lifetime_messages:.2f}")
    embed.add_field(name="All-Time Highest Streak", value=str(report.highest_streak_all_time))
    embed.add_field(name="All-Time Highest Level", value=str(report.highest_level_all_time))
    embed.add_field(name="Total Leader Wins", value=str(report.total_leader_wins))
    if report.top_streaks:
        embed.add_field(
            name="Top Highest Streaks (All Time)",
            value="\n".join(
                f"{i}. <@{uid}> ({_format_value(v)})"
                for i, (uid, v) in enumerate(report.top_streaks, start=1)
            ),
            inline=False,
        )
    embed.set_footer(text=f"Guild ID: {report.guild_id}")
    return embed


def build_leaderboard_embed(
    guild_name: str, metric: Metric, rows: Sequence[tuple[int, float]]
) -> discord.Embed:
    lines = [
        f"{_rank_prefix(rank)} <@{uid}> — **{_format_value(value)}**"
        for rank, (uid, value) in enumerate(rows, start=1)
    ]
    return discord.Embed(
        title=f"\U0001f4ca {METRIC_LABELS[metric]} Leaderboard",
        description="\n".join(lines) or "No data yet.",
        color=discord.Color.blurple(),
    ).set_footer(text=guild_name)


def build_profile_embed(
    display_name: str,
    avatar_url: str,
    state: UserProgressionState,
    config: GuildConfig | None,
) -> discord.Embed:
    embed = discord.Embed(
        title=f"{display_name}'s Profile",
        color=discord.Color.teal(),
    )
    embed.set_thumbnail(url=avatar_url)

    if config is None or config.streak.enabled:
        embed.add_field(name="Streak", value=f"\U0001f525 {state.streak}")
        embed.add_field(name="Highest Streak", value=str(state.highest_streak))
        embed.add_field(
            name="Today",
            value="✅ Credited" if state.received_daily else f"{state.threshold} to go",
        )

    if config is None or config.level.enabled:
        if config is not None:
            required = xp_for_level(
                state.experience.level, config.level.level_multiplier, config.level.base_xp
            )
        else:
            required = xp_for_level(state.experience.level)
        embed.add_field(name="Level", value=str(state.experience.level))
        embed.add_field(name="XP", value=f"{state.experience.total_xp:,} / {required:,}")

    embed.add_field(name="Messages (Week)", value=f"{state.messages:,}")
    embed.add_field(name="Lifetime Messages", value=f"{state.total_messages:,}")
    embed.add_field(name="Leader Wins", value=str(state.message_leader_wins))
    embed.add_field(name="Active Days", value=str(state.active_days_count))
    embed.add_field(name="Avg / Day", value=f"{state.average_messages_per_day:.2f}")
    if state.milestones:
        recent = ", ".join(f"{m.milestone}d" for m in state.milestones[-5:])
        embed.add_field(name="Milestones", value=recent, inline=False)
    return embed


def _json_block(data: object, limit: int = 1000) -> str:
    body = json.dumps(data, indent=2, sort_keys=True)
    if len(body) > limit:
        body = body[:limit] + "\n…"
    return f"```json\n{body}\n```"


def _checklist(items: Sequence[tuple[str, bool]]) -> str:
    return "\n".join(
        f"{'✅' if granted else '❌'} {name.replace('_', ' ').title()}" for name, granted in items
    )


def build_debug_embed(
    guild_name: str,
    member_name: str,
    snapshot: DebugSnapshot,
    bot_permissions: Sequence[tuple[str, bool]],
    channel_permissions: Sequence[tuple[str, bool]],
) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f6e0️ Debug Information",
        description=f"{member_name} in **{guild_name}**",
        color=discord.Color.red(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Bot Permissions", value=_checklist(bot_permissions))
    embed.add_field(name="Channel Permissions", value=_checklist(channel_permissions))
    embed.add_field(
        name="Guild Configuration",
        value=_json_block(snapshot.config) if snapshot.config is not None else "Not configured.",
        inline=False,
    )
    embed.add_field(
        name="User Data",
        value=_json_block(snapshot.user) if snapshot.user is not None else "No record yet.",
        inline=False,
    )
    return embed
