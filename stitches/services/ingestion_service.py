"""
stitches.services.ingestion_service — Message ingestion pipeline
=================================================================

Orchestrates one inbound message end to end::

    admission filter → cooldown → load state → apply_message (pure)
        → role grants → put_user → announcements

The pipeline owns its per-(guild, user) caches.  Calls for different
users never share mutable state; concurrent calls for the *same* user are
last-write-wins at the store.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from stitches.constants import DEBOUNCE_MS
from stitches.database.engine import run_db
from stitches.engine.admission import AdmissionFilter
from stitches.engine.cache import BoundedTTLCache
from stitches.engine.guild_config import GuildConfig
from stitches.engine.progression import ProgressionOutcome, apply_message
from stitches.engine.state import UserProgressionState
from stitches.services.record_store import IndexWriteError, RecordStore, StoreError

if TYPE_CHECKING:
    from stitches.services.config_service import GuildConfigProvider
    from stitches.services.notifier import Notifier

logger = logging.getLogger(__name__)


class IngestStatus(enum.StrEnum):
    ACCEPTED = "accepted"
    DROPPED = "dropped"        # admission filter
    DEBOUNCED = "debounced"    # inside the cooldown window
    STORE_FAILED = "store_failed"


@dataclass(frozen=True, slots=True)
class IngestResult:
    status: IngestStatus
    outcome: ProgressionOutcome | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status is IngestStatus.ACCEPTED


async def notify_safely(call: Awaitable[None], what: str) -> None:
    """Await a notifier call; log and swallow its failure."""
    try:
        await call
    except Exception:
        logger.exception("Notifier call failed: %s", what)


class IngestionPipeline:
    """Turns accepted chat messages into persisted progression state."""

    def __init__(
        self,
        store: RecordStore,
        configs: GuildConfigProvider,
        notifier: Notifier,
        *,
        admission: AdmissionFilter | None = None,
        debounce_ms: float = DEBOUNCE_MS,
        cooldowns: BoundedTTLCache[tuple[int, int], float] | None = None,
    ) -> None:
        self.store = store
        self.configs = configs
        self.notifier = notifier
        self.admission = admission or AdmissionFilter()
        self.debounce_ms = debounce_ms
        self._cooldowns = cooldowns if cooldowns is not None else BoundedTTLCache(
            max_entries=20_000, ttl_seconds=600
        )

    def purge_caches(self) -> int:
        return self._cooldowns.purge_expired() + self.admission.purge_expired()

    def _debounced(self, guild_id: int, user_id: int, time_ms: float) -> bool:
        key = (guild_id, user_id)
        last = self._cooldowns.get(key)
        if last is not None and time_ms - last < self.debounce_ms:
            return True
        self._cooldowns.set(key, time_ms)
        return False

    async def ingest(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int,
        content: str,
        timestamp: datetime,
    ) -> IngestResult:
        """Process one message.  *timestamp* must be timezone-aware."""
        time_ms = timestamp.timestamp() * 1000

        if not self.admission.admit(guild_id, user_id, content, time_ms):
            return IngestResult(IngestStatus.DROPPED)
        if self._debounced(guild_id, user_id, time_ms):
            return IngestResult(IngestStatus.DEBOUNCED)

        try:
            config = await run_db(self.configs.get_config, guild_id)
            config = config or GuildConfig(guild_id=guild_id)
            state = await run_db(self.store.get_user, guild_id, user_id)
        except StoreError as exc:
            logger.exception("Failed to load state for user %s in guild %s", user_id, guild_id)
            return IngestResult(IngestStatus.STORE_FAILED, error=str(exc))

        if state is None:
            state = UserProgressionState.new(config.streak.streak_threshold)
            logger.info("Created progression record for user %s in guild %s", user_id, guild_id)

        outcome = apply_message(
            state, config, channel_id=channel_id, content=content, now=timestamp
        )

        for role_id in outcome.roles_to_grant:
            await notify_safely(
                self.notifier.grant_role(guild_id, user_id, role_id, "Progression reward"),
                f"grant_role {role_id}",
            )

        index_error: str | None = None
        try:
            await run_db(self.store.put_user, guild_id, user_id, state)
        except IndexWriteError as exc:
            # primary record committed; only the leaderboard index lags
            logger.warning("Index lagging for user %s in guild %s: %s", user_id, guild_id, exc)
            index_error = str(exc)
        except StoreError as exc:
            logger.exception("Failed to save state for user %s in guild %s", user_id, guild_id)
            return IngestResult(IngestStatus.STORE_FAILED, outcome=outcome, error=str(exc))

        if outcome.streak_credit is not None:
            await notify_safely(
                self.notifier.streak_increased(config, user_id, outcome.streak_credit, channel_id),
                "streak_increased",
            )
        if outcome.level_up is not None:
            await notify_safely(
                self.notifier.level_up(config, user_id, outcome.level_up, channel_id),
                "level_up",
            )
        return IngestResult(IngestStatus.ACCEPTED, outcome=outcome, error=index_error)
