"""
stitches.services.leaderboard_service — Ranked reads over the metric index
===========================================================================

Leaderboards read the ``metric_index`` projection only, never the primary
records.  Unknown metric names yield an empty board rather than an error.
"""

from __future__ import annotations

import logging

from stitches.constants import LEADERBOARD_MAX_LIMIT
from stitches.engine.state import Metric
from stitches.services.record_store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def clamp_limit(limit: int) -> int:
    """Cap *limit* at the board maximum.  Zero or less stays as is (an empty board)."""
    return min(int(limit), LEADERBOARD_MAX_LIMIT)


def query_leaderboard(
    store: RecordStore,
    guild_id: int,
    metric_name: str,
    limit: int = DEFAULT_LIMIT,
) -> list[tuple[int, float]]:
    """Top users for *metric_name*, highest first, ties by user id.

    Synchronous; call through ``run_db`` from async code.
    """
    metric = Metric.parse(metric_name)
    if metric is None:
        logger.debug("Leaderboard requested for unknown metric %r", metric_name)
        return []
    limit = clamp_limit(limit)
    if limit <= 0:
        return []
    return store.query_metric(guild_id, metric, limit)
