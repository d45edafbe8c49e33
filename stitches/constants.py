"""
stitches.constants — Shared Constants & Helpers
================================================

Single source of truth for the leveling formula and the timing constants
of the message pipeline.  Import from here instead of duplicating in cogs,
services, and engine modules.
"""

from __future__ import annotations

import math

RANK_BADGES: list[str] = ["\U0001f3c6", "\U0001f948", "\U0001f949"]  # 🏆🥈🥉

# ---------------------------------------------------------------------------
# Message pipeline timing
# ---------------------------------------------------------------------------
DEBOUNCE_MS = 3000
SPAM_WINDOW_MS = 2500
SPAM_SIMILARITY = 0.85

# ---------------------------------------------------------------------------
# Guild defaults (used when a config field is missing or malformed)
# ---------------------------------------------------------------------------
DEFAULT_STREAK_THRESHOLD = 10
DEFAULT_XP_PER_MESSAGE = 10
DEFAULT_LEVEL_MULTIPLIER = 1.5
DEFAULT_BASE_XP = 100

# ---------------------------------------------------------------------------
# Record shape limits
# ---------------------------------------------------------------------------
HEATMAP_DAYS = 60
CHANNELS_TRACKED = 20
LAST_MESSAGE_CHARS = 200

# ---------------------------------------------------------------------------
# Rollover / batch limits
# ---------------------------------------------------------------------------
LEADERBOARD_MAX_LIMIT = 50
BATCH_CHUNK_SIZE = 25
BATCH_MAX_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
def xp_for_level(
    level: int,
    multiplier: float = DEFAULT_LEVEL_MULTIPLIER,
    base: int = DEFAULT_BASE_XP,
) -> int:
    """XP required to advance from *level* to ``level + 1``.

    Uses the exponential formula::

        required = floor(base * (multiplier ** level))
    """
    return math.floor(base * (multiplier ** level))
