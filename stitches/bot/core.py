"""
stitches.bot.core — Bot Instance & Cog Loader
==============================================

Defines :class:`StitchesBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``) and DB engine (``bot.engine``).
2. Wires the services every cog uses: record store, guild config
   provider, Discord notifier, ingestion pipeline, rollover service,
   scheduler and admin service.
3. Loads every cog in ``stitches/bot/cogs/``.
4. Syncs the slash-command tree on startup (guild-scoped when
   ``dev_guild_id`` is set, global otherwise).
5. Makes sure every joined guild has a config document.
"""

from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands
from sqlalchemy import Engine

from stitches.config import StitchesConfig
from stitches.database.engine import run_db
from stitches.services.admin_service import AdminService
from stitches.services.announcement_service import DiscordNotifier
from stitches.services.config_service import GuildConfigProvider
from stitches.services.ingestion_service import IngestionPipeline
from stitches.services.record_store import SqlRecordStore
from stitches.services.rollover_service import RolloverService
from stitches.services.scheduler import RolloverScheduler, default_jobs

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "stitches.bot.cogs.messages",
    "stitches.bot.cogs.meta",
    "stitches.bot.cogs.admin",
    "stitches.bot.cogs.tasks",
]


class StitchesBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`StitchesConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: StitchesConfig, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: spam similarity check
        intents.members = True            # Privileged: role grants / leader role holders
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.bot_name} — streaks, levels and message leaders",
        )

        self.cfg = cfg
        self.engine = engine

        self.store = SqlRecordStore(engine)
        self.guild_configs = GuildConfigProvider(engine)
        self.notifier = DiscordNotifier(self)
        self.ingestion = IngestionPipeline(self.store, self.guild_configs, self.notifier)
        self.rollover = RolloverService(
            self.store,
            self.guild_configs,
            self.notifier,
            pool_size=cfg.worker_pool_size,
            leader_top_n=cfg.leader_top_n,
            monthly_interval_days=cfg.monthly_report_interval_days,
        )
        self.scheduler = RolloverScheduler(
            engine,
            default_jobs(self.rollover, monthly_interval_days=cfg.monthly_report_interval_days),
        )
        self.admin = AdminService(self.store, self.guild_configs, self.notifier)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all cog extensions.  One broken cog doesn't stop the rest."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        if self.cfg.dev_guild_id:
            guild = discord.Object(id=self.cfg.dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), self.cfg.dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        for guild in self.guilds:
            await self._ensure_guild_config(guild)

        self.notifier.start(asyncio.get_running_loop())
        logger.info("Announcement throttle drain task started.")

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("Joined guild %s (%s)", guild.name, guild.id)
        await self._ensure_guild_config(guild)

    async def _ensure_guild_config(self, guild: discord.Guild) -> None:
        try:
            await run_db(self.guild_configs.ensure_config, guild.id)
        except Exception:
            logger.exception("Failed to initialise config for guild %s", guild.id)

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        self.notifier.stop()
        await super().close()
