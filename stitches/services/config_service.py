"""
stitches.services.config_service — Per-guild configuration provider
====================================================================

Typed read access to the ``guild_configs`` table with an in-memory cache.
Writes go through :meth:`GuildConfigProvider.save_config`, which refreshes
the cache entry so the next message sees the change.  Database failures
surface as :class:`~stitches.services.record_store.StoreError`, the same as
the record store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from stitches.database.models import GuildConfigRecord
from stitches.engine.cache import BoundedTTLCache
from stitches.engine.guild_config import GuildConfig, ensure_config_structure
from stitches.services.record_store import store_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

CONFIG_SECTIONS = ("streakSystem", "levelSystem", "messageLeaderSystem", "reportSettings")


class GuildConfigProvider:
    """Read-through cache over ``guild_configs``.

    ``get_config`` returns ``None`` for a guild with no row; callers treat
    that as every subsystem disabled.
    """

    def __init__(self, engine: Engine, *, ttl_seconds: float = 300.0) -> None:
        self._engine = engine
        self._cache: BoundedTTLCache[int, GuildConfig] = BoundedTTLCache(
            max_entries=5_000, ttl_seconds=ttl_seconds
        )

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_config(self, guild_id: int) -> GuildConfig | None:
        cached = self._cache.get(guild_id)
        if cached is not None:
            return cached
        raw = self.get_raw(guild_id)
        if raw is None:
            return None
        config = GuildConfig.from_dict(guild_id, raw)
        self._cache.set(guild_id, config)
        return config

    def get_raw(self, guild_id: int) -> dict[str, Any] | None:
        with store_session(self._engine) as session:
            row = session.get(GuildConfigRecord, guild_id)
            return dict(row.config or {}) if row else None

    def list_guild_ids(self) -> list[int]:
        with store_session(self._engine) as session:
            return list(session.scalars(
                select(GuildConfigRecord.guild_id).order_by(GuildConfigRecord.guild_id)
            ))

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def save_config(self, guild_id: int, raw: Mapping[str, Any]) -> GuildConfig:
        """Replace the stored document for *guild_id*.

        The document is parsed before it is written, so a value that cannot
        be read never reaches the table.
        """
        document = dict(raw)
        config = GuildConfig.from_dict(guild_id, document)
        with store_session(self._engine) as session:
            row = session.get(GuildConfigRecord, guild_id)
            if row is None:
                session.add(GuildConfigRecord(guild_id=guild_id, config=document))
            else:
                row.config = document

        self._cache.set(guild_id, config)
        logger.info("Saved config for guild %s", guild_id)
        return config

    def ensure_config(self, guild_id: int) -> GuildConfig:
        """Create or fill in the config document so every section exists."""
        raw = self.get_raw(guild_id)
        filled = ensure_config_structure(raw)
        if raw == filled:
            return self.get_config(guild_id) or GuildConfig.from_dict(guild_id, filled)
        logger.info("Initialising config structure for guild %s", guild_id)
        return self.save_config(guild_id, filled)

    def set_value(self, guild_id: int, section: str, key: str, value: Any) -> GuildConfig:
        """Set one ``section.key`` in the document, creating the section if needed."""
        if section not in CONFIG_SECTIONS:
            raise ValueError(f"Unknown config section: {section!r}")
        document = ensure_config_structure(self.get_raw(guild_id))
        document[section][key] = value
        return self.save_config(guild_id, document)


def coerce_config_value(raw: str) -> Any:
    """Turn a command-line string into the stored JSON value.

    ``true``/``false`` become booleans.  Everything else is kept as text;
    ids and numbers are parsed when the config is read.
    """
    text = raw.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    return text
