"""
stitches.bot.cogs.tasks — Scheduler tick
=========================================

A ``discord.ext.tasks`` loop wakes every ``scheduler_tick_seconds`` and
asks :class:`~stitches.services.scheduler.RolloverScheduler` to run any
job whose persisted ``next_run_at`` has passed.  Jobs run in the bot
process to keep the deployment simple.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

if TYPE_CHECKING:
    from stitches.bot.core import StitchesBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Drives the daily / weekly / monthly rollovers."""

    def __init__(self, bot: StitchesBot) -> None:
        self.bot = bot
        self.scheduler_loop.change_interval(seconds=bot.cfg.scheduler_tick_seconds)

    async def cog_load(self) -> None:
        self.scheduler_loop.start()

    async def cog_unload(self) -> None:
        self.scheduler_loop.cancel()

    @tasks.loop(seconds=60)
    async def scheduler_loop(self) -> None:
        try:
            ran = await self.bot.scheduler.tick()
        except Exception:
            logger.exception("Scheduler tick failed", extra={"task": "scheduler"})
            return
        if ran:
            logger.info("Scheduler ran: %s", ", ".join(ran))

    @scheduler_loop.before_loop
    async def _wait_scheduler(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: StitchesBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
