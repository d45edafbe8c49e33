"""
stitches.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings (bot identity,
scheduler cadence, worker pool size).  Gameplay tuning (streak thresholds,
XP per message, role bindings) is per guild and lives in the
``guild_configs`` table, read through
:class:`~stitches.services.config_service.GuildConfigProvider`.

Usage::

    from stitches.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.bot_name)          # "Stitches"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StitchesConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    bot_name: str
    bot_prefix: str

    # Scheduler
    scheduler_tick_seconds: int = 60
    monthly_report_interval_days: int = 30

    # Rollover fan-out
    worker_pool_size: int = 25
    leader_top_n: int = 5

    # Optional: guild to sync slash commands to during development
    dev_guild_id: int | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> StitchesConfig:
    """Read *path* and return a :class:`StitchesConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return StitchesConfig(
        bot_name=raw["bot_name"],
        bot_prefix=raw["bot_prefix"],
        scheduler_tick_seconds=int(raw.get("scheduler_tick_seconds", 60)),
        monthly_report_interval_days=int(raw.get("monthly_report_interval_days", 30)),
        worker_pool_size=int(raw.get("worker_pool_size", 25)),
        leader_top_n=int(raw.get("leader_top_n", 5)),
        dev_guild_id=int(raw["dev_guild_id"]) if raw.get("dev_guild_id") else None,
    )
