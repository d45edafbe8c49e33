"""
Stitches — Streaks, Levels & Message Leaders for Discord
==========================================================
Tracks per-user daily message streaks, an XP/level ladder, and a weekly
"message leader" competition for every guild the bot is in, and runs the
scheduled rollovers that keep that state honest.

Package layout::

    stitches/
    ├── config.py          # YAML → typed infrastructure config
    ├── constants.py       # Leveling formula + shared constants
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (progress, metric index, jobs)
    ├── engine/
    │   ├── state.py       # UserProgressionState + Metric enum
    │   ├── guild_config.py # Typed, default-filling guild config view
    │   ├── progression.py # Per-message streak / XP / activity rules
    │   ├── rollover.py    # Daily / weekly rules + report aggregation
    │   ├── admission.py   # Similarity-based spam gate
    │   └── cache.py       # Bounded TTL cache for cooldowns
    ├── services/
    │   ├── record_store.py      # RecordStore interface + SQL implementation
    │   ├── config_service.py    # Guild config rows + in-memory cache
    │   ├── ingestion_service.py # Event ingestion pipeline
    │   ├── rollover_service.py  # Guild scans, worker pool, batch resets
    │   ├── scheduler.py         # Persistent next-run scheduler
    │   ├── leaderboard_service.py # Ranked reads over the metric index
    │   ├── admin_service.py     # Manual edits and resets
    │   ├── notifier.py          # Notifier protocol (side effects)
    │   ├── announcement_service.py # Discord implementation of Notifier
    │   ├── embeds.py            # Embed builders
    │   └── throttle.py          # Per-channel announcement throttle
    └── bot/
        ├── core.py        # Bot subclass, cog loader
        └── cogs/
            ├── messages.py  # on_message → ingestion pipeline
            ├── tasks.py     # Scheduler tick loop
            ├── meta.py      # /profile, /leaderboard
            └── admin.py     # /edit-user-data, /reset-messages
"""

__version__ = "0.1.0"
