"""
stitches.services.throttle — Sliding-window announcement throttle
==================================================================

Rate-limits per-channel message delivery and queues overflow for
background draining every ~10 seconds.  Owned by the notifier; one
instance per bot.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass

import discord
from discord.abc import Messageable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueuedMessage:
    channel: Messageable
    content: str | None = None
    embed: discord.Embed | None = None


class AnnouncementThrottle:
    """Sliding-window throttle with a FIFO overflow queue per channel.

    - Up to ``max_per_window`` sends per channel per ``window`` seconds.
    - Excess sends are queued and drained every ``drain_interval`` seconds.
    """

    def __init__(
        self,
        max_per_window: int = 5,
        window: float = 60,
        *,
        drain_interval: float = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_per_window = max_per_window
        self.window = window
        self.drain_interval = drain_interval
        self._clock = clock
        self._timestamps: dict[int, deque[float]] = defaultdict(deque)
        self._queues: dict[int, deque[QueuedMessage]] = defaultdict(deque)
        self._drain_task: asyncio.Task | None = None

    def is_allowed(self, channel_id: int) -> bool:
        """Return True and record a send if the window has room."""
        now = self._clock()
        stamps = self._timestamps[channel_id]
        while stamps and stamps[0] <= now - self.window:
            stamps.popleft()
        if len(stamps) >= self.max_per_window:
            return False
        stamps.append(now)
        return True

    def pending(self, channel_id: int | None = None) -> int:
        if channel_id is not None:
            return len(self._queues.get(channel_id, ()))
        return sum(len(q) for q in self._queues.values())

    async def send(
        self,
        channel: Messageable,
        *,
        content: str | None = None,
        embed: discord.Embed | None = None,
    ) -> bool:
        """Send now if allowed, otherwise queue.  Returns True if sent now."""
        channel_id = getattr(channel, "id", 0)
        if self._queues.get(channel_id) or not self.is_allowed(channel_id):
            self._queues[channel_id].append(QueuedMessage(channel, content, embed))
            return False
        await self._deliver(channel_id, QueuedMessage(channel, content, embed))
        return True

    async def _deliver(self, channel_id: int, item: QueuedMessage) -> None:
        try:
            await item.channel.send(content=item.content, embed=item.embed)
        except discord.HTTPException:
            logger.exception("Failed to send announcement to channel %d", channel_id)

    async def drain_once(self) -> int:
        """Deliver queued messages for channels whose window has reopened."""
        sent = 0
        for channel_id, queue in list(self._queues.items()):
            while queue and self.is_allowed(channel_id):
                await self._deliver(channel_id, queue.popleft())
                sent += 1
            if not queue:
                del self._queues[channel_id]
        return sent

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background drain task."""
        if self._drain_task is not None:
            return

        async def _drain_loop() -> None:
            while True:
                await asyncio.sleep(self.drain_interval)
                try:
                    await self.drain_once()
                except Exception:
                    logger.exception("Throttle drain error")

        self._drain_task = loop.create_task(_drain_loop(), name="announce-drain")

    def stop(self) -> None:
        if self._drain_task:
            self._drain_task.cancel()
            self._drain_task = None
