"""
stitches.bot.cogs.admin — Admin Slash Commands
==============================================

Discord slash commands for server moderators:
- /edit-user-data — set one tracked field on a member's record
- /reset-messages — zero the weekly message count for a member or the server
- /config-show — print the guild's config document
- /config-set — change one key in the guild's config document
- /debug — bot permissions, the config document and a member's record
- /run-rollover — run one rollover job for this server immediately

All commands require the Manage Server permission.  Responses are
ephemeral; role changes go through the notifier.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from stitches.database.engine import run_db
from stitches.services.admin_service import (
    EditableField,
    EditOutcome,
    InvalidEditError,
    permission_checklist,
)
from stitches.services.config_service import CONFIG_SECTIONS, coerce_config_value
from stitches.services.embeds import build_debug_embed
from stitches.services.record_store import StoreError
from stitches.services.rollover_service import ROLLOVER_JOBS

if TYPE_CHECKING:
    from stitches.bot.core import StitchesBot

logger = logging.getLogger(__name__)


def is_moderator():
    """Decorator that checks the invoking member can manage the server."""
    async def predicate(interaction: discord.Interaction) -> bool:
        perms = getattr(interaction.user, "guild_permissions", None)
        return bool(perms and perms.manage_guild)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Moderator tools for member records and guild config."""

    def __init__(self, bot: StitchesBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /edit-user-data
    # -------------------------------------------------------------------
    @app_commands.command(name="edit-user-data", description="Edit a tracked value on a member.")
    @app_commands.guild_only()
    @app_commands.describe(
        member="The member to edit",
        field="Which value to change",
        value="New value (a whole number, or true/false for receivedDaily)",
    )
    @app_commands.choices(field=[
        app_commands.Choice(name=f.value, value=f.value) for f in EditableField
    ])
    @is_moderator()
    async def edit_user_data(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        field: str,
        value: str,
    ) -> None:
        assert interaction.guild_id is not None
        edit = EditableField(field)
        try:
            result = await self.bot.admin.edit_user_field(
                interaction.guild_id, member.id, edit, value
            )
        except InvalidEditError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        if result.outcome is EditOutcome.NOT_FOUND:
            await interaction.response.send_message(
                f"🔍 **{member.display_name}** has no record in this server yet.",
                ephemeral=True,
            )
            return

        lines = [f"✅ **{member.display_name}** `{edit.value}`: {result.old_value} → {result.new_value}"]
        if result.roles_granted:
            lines.append("Granted: " + ", ".join(f"<@&{r}>" for r in result.roles_granted))
        if result.roles_revoked:
            lines.append("Removed: " + ", ".join(f"<@&{r}>" for r in result.roles_revoked))
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    # -------------------------------------------------------------------
    # /reset-messages
    # -------------------------------------------------------------------
    @app_commands.command(
        name="reset-messages",
        description="Reset weekly message counts for a member or the whole server.",
    )
    @app_commands.guild_only()
    @app_commands.describe(
        scope="Reset one member or everyone",
        member="The member to reset (required for the user scope)",
    )
    @app_commands.choices(scope=[
        app_commands.Choice(name="User", value="user"),
        app_commands.Choice(name="Server", value="server"),
    ])
    @is_moderator()
    async def reset_messages(
        self,
        interaction: discord.Interaction,
        scope: str,
        member: discord.Member | None = None,
    ) -> None:
        assert interaction.guild_id is not None
        if scope == "user":
            if member is None:
                await interaction.response.send_message(
                    "❌ Pick a member to reset.", ephemeral=True,
                )
                return
            outcome = await self.bot.admin.reset_messages_user(interaction.guild_id, member.id)
            if outcome is EditOutcome.NOT_FOUND:
                msg = f"🔍 **{member.display_name}** has no record in this server yet."
            else:
                msg = f"✅ Reset weekly messages for **{member.display_name}**."
            await interaction.response.send_message(msg, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.admin.reset_messages_guild(interaction.guild_id)
        msg = f"✅ Reset weekly messages for {result.success_count} member(s)."
        if result.fail_count:
            msg += f"\n⚠️ {result.fail_count} record(s) could not be reset; try again later."
        await interaction.followup.send(msg, ephemeral=True)

    # -------------------------------------------------------------------
    # /config-show, /config-set
    # -------------------------------------------------------------------
    @app_commands.command(name="config-show", description="Show this server's Stitches config.")
    @app_commands.guild_only()
    @is_moderator()
    async def config_show(self, interaction: discord.Interaction) -> None:
        assert interaction.guild_id is not None
        await run_db(self.bot.guild_configs.ensure_config, interaction.guild_id)
        raw = await run_db(self.bot.guild_configs.get_raw, interaction.guild_id)
        body = json.dumps(raw, indent=2, sort_keys=True)
        await interaction.response.send_message(f"```json\n{body[:1900]}\n```", ephemeral=True)

    @app_commands.command(name="config-set", description="Change one value in this server's config.")
    @app_commands.guild_only()
    @app_commands.describe(
        section="Config section",
        key="Key inside the section (e.g. streakThreshold, role7day, channelLevelUp)",
        value="New value; true/false for switches, ids and numbers as plain text",
    )
    @app_commands.choices(section=[
        app_commands.Choice(name=s, value=s) for s in CONFIG_SECTIONS
    ])
    @is_moderator()
    async def config_set(
        self,
        interaction: discord.Interaction,
        section: str,
        key: str,
        value: str,
    ) -> None:
        assert interaction.guild_id is not None
        parsed = coerce_config_value(value)
        try:
            await run_db(
                self.bot.guild_configs.set_value, interaction.guild_id, section, key, parsed
            )
        except ValueError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        logger.info(
            "Config %s.%s set to %r in guild %s by %s",
            section, key, parsed, interaction.guild_id, interaction.user.id,
        )
        await interaction.response.send_message(
            f"✅ `{section}.{key}` = `{parsed!r}`", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /debug
    # -------------------------------------------------------------------
    @app_commands.command(
        name="debug",
        description="Show the bot's permissions, this server's config and a member's record.",
    )
    @app_commands.guild_only()
    @app_commands.describe(member="The member to inspect (defaults to you)")
    @is_moderator()
    async def debug(
        self, interaction: discord.Interaction, member: discord.Member | None = None
    ) -> None:
        guild = interaction.guild
        assert guild is not None
        target = member or interaction.user
        snapshot = await self.bot.admin.debug_snapshot(guild.id, target.id)

        me = guild.me
        channel_perms = interaction.channel.permissions_for(me) if interaction.channel else None
        embed = build_debug_embed(
            guild.name,
            target.display_name,
            snapshot,
            permission_checklist(me.guild_permissions),
            permission_checklist(channel_perms),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /run-rollover
    # -------------------------------------------------------------------
    @app_commands.command(
        name="run-rollover",
        description="Run one rollover job for this server now.",
    )
    @app_commands.guild_only()
    @app_commands.describe(job="Which job to run; jobs already done this period are skipped")
    @app_commands.choices(job=[app_commands.Choice(name=j, value=j) for j in ROLLOVER_JOBS])
    @is_moderator()
    async def run_rollover(self, interaction: discord.Interaction, job: str) -> None:
        assert interaction.guild_id is not None
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await self.bot.rollover.run_job_for_guild(
                job, interaction.guild_id, datetime.now(timezone.utc)
            )
        except (LookupError, ValueError) as exc:
            await interaction.followup.send(f"❌ {exc}", ephemeral=True)
            return
        except StoreError:
            logger.exception("Manual %s failed in guild %s", job, interaction.guild_id)
            await interaction.followup.send(
                "⚠️ The database is unavailable right now; try again later.", ephemeral=True,
            )
            return

        logger.info(
            "Manual %s in guild %s by %s: %d ok, %d failed",
            job, interaction.guild_id, interaction.user.id,
            result.success_count, result.fail_count,
        )
        msg = f"✅ `{job}` finished for {result.success_count} record(s)."
        if result.fail_count:
            msg += f"\n⚠️ {result.fail_count} record(s) failed; see the logs."
        await interaction.followup.send(msg, ephemeral=True)

    # -------------------------------------------------------------------
    # Error handler
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Manage Server permission to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: StitchesBot) -> None:
    await bot.add_cog(Admin(bot))
