"""
stitches.engine.admission — Repeat-message admission filter
============================================================

Drops a message when it arrives within :data:`SPAM_WINDOW_MS` of the
user's previous *accepted* message and reads almost the same.  Similarity
is a normalized Levenshtein score::

    similarity = (len(longer) - distance(shorter, longer)) / len(longer)

This is a heuristic gate in front of ingestion, not a spam guarantee.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from stitches.constants import SPAM_SIMILARITY, SPAM_WINDOW_MS
from stitches.engine.cache import BoundedTTLCache

logger = logging.getLogger(__name__)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between *a* and *b* (insert/delete/substitute)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str | None, b: str | None) -> float:
    """Normalized similarity in [0, 1].

    Two empty strings score 1.0; a missing side scores 0.0.
    """
    if a is None or b is None:
        return 0.0
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein(shorter, longer)) / len(longer)


@dataclass(frozen=True, slots=True)
class PreviousMessage:
    content: str
    time_ms: float


class AdmissionFilter:
    """Per-(guild, user) memory of the last accepted message.

    :meth:`admit` both decides and, on acceptance, records the message.
    Dropped messages leave the memory untouched.
    """

    def __init__(
        self,
        *,
        window_ms: float = SPAM_WINDOW_MS,
        threshold: float = SPAM_SIMILARITY,
        cache: BoundedTTLCache[tuple[int, int], PreviousMessage] | None = None,
    ) -> None:
        self.window_ms = window_ms
        self.threshold = threshold
        self._previous = cache if cache is not None else BoundedTTLCache(
            max_entries=20_000, ttl_seconds=600
        )

    def is_repeat(
        self, guild_id: int, user_id: int, content: str, time_ms: float
    ) -> bool:
        prev = self._previous.get((guild_id, user_id))
        if prev is None:
            return False
        elapsed = time_ms - prev.time_ms
        return elapsed < self.window_ms and similarity(prev.content, content) > self.threshold

    def admit(self, guild_id: int, user_id: int, content: str, time_ms: float) -> bool:
        """Return True if the message may proceed to ingestion."""
        if self.is_repeat(guild_id, user_id, content, time_ms):
            logger.debug("Dropped repeat message from user %s in guild %s", user_id, guild_id)
            return False
        self._previous.set((guild_id, user_id), PreviousMessage(content, time_ms))
        return True

    def purge_expired(self) -> int:
        return self._previous.purge_expired()
