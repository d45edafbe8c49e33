"""
stitches.bot.cogs.messages — Message listener
==============================================

Feeds every guild message from a human author into the
:class:`~stitches.services.ingestion_service.IngestionPipeline`.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

if TYPE_CHECKING:
    from stitches.bot.core import StitchesBot

logger = logging.getLogger(__name__)


class Messages(commands.Cog, name="Messages"):
    """Streak, XP and message counting for chat messages."""

    def __init__(self, bot: StitchesBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self._purge_caches.start()

    async def cog_unload(self) -> None:
        self._purge_caches.cancel()

    @tasks.loop(minutes=10)
    async def _purge_caches(self) -> None:
        pruned = self.bot.ingestion.purge_caches()
        if pruned:
            logger.debug("Pruned %d expired cooldown/admission entries", pruned)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        try:
            result = await self.bot.ingestion.ingest(
                message.guild.id,
                message.author.id,
                message.channel.id,
                message.content,
                message.created_at.astimezone(timezone.utc),
            )
        except Exception:
            logger.exception(
                "Error processing message %s from user %s",
                message.id, message.author.id,
            )
            return
        logger.debug(
            "Message %s from %s in guild %s: %s",
            message.id, message.author.id, message.guild.id, result.status,
        )


async def setup(bot: StitchesBot) -> None:
    await bot.add_cog(Messages(bot))
