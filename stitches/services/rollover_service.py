"""
stitches.services.rollover_service — Scheduled guild rollovers
===============================================================

Applies the pure rules of :mod:`stitches.engine.rollover` across every
configured guild:

- **Daily** — close the previous UTC day for every user; streak expiry
  revokes milestone roles and DMs the user.
- **Weekly leaders** — rank by weekly messages, update competition stats,
  move the leader role, announce, then batch-reset ``messages``.
- **Weekly / monthly reports** — aggregate and post; no state changes.

Users are scanned one keyset page at a time.  Each page fans out to a
bounded worker pool (``asyncio.Semaphore``).  A failure for one user is
logged and counted in the :class:`BatchResult`; only
:class:`StoreUnavailableError` aborts the job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from stitches.database.engine import run_db
from stitches.engine.guild_config import GuildConfig
from stitches.engine.rollover import (
    apply_daily_rollover,
    apply_leader_result,
    build_monthly_report,
    build_weekly_report,
    iso_week,
    rank_message_leaders,
    utc_day,
)
from stitches.engine.state import Metric, UserProgressionState
from stitches.services.ingestion_service import notify_safely
from stitches.services.record_store import (
    BatchResult,
    RecordStore,
    StoreError,
    StoreUnavailableError,
    UserField,
)

if TYPE_CHECKING:
    from stitches.services.config_service import GuildConfigProvider
    from stitches.services.notifier import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

DAILY_ROLLOVER_JOB = "daily_rollover"
WEEKLY_LEADERS_JOB = "weekly_leaders"
WEEKLY_RESET_JOB = "weekly_reset"
WEEKLY_REPORT_JOB = "weekly_report"
MONTHLY_REPORT_JOB = "monthly_report"
ROLLOVER_JOBS = (DAILY_ROLLOVER_JOB, WEEKLY_LEADERS_JOB, WEEKLY_REPORT_JOB, MONTHLY_REPORT_JOB)
REPORT_TOP_N = 3


# ---------------------------------------------------------------------------
# Scan & pool helpers
# ---------------------------------------------------------------------------
async def iter_user_pages(
    store: RecordStore, guild_id: int, page_size: int = 200
) -> AsyncIterator[list[tuple[int, UserProgressionState]]]:
    """Yield keyset pages of ``(user_id, state)`` for *guild_id*."""
    after: int | None = None
    while True:
        page = await run_db(store.list_user_page, guild_id, after, page_size)
        if page:
            yield page
        if len(page) < page_size:
            return
        after = page[-1][0]


async def collect_users(
    store: RecordStore, guild_id: int, page_size: int = 200
) -> list[tuple[int, UserProgressionState]]:
    users: list[tuple[int, UserProgressionState]] = []
    async for page in iter_user_pages(store, guild_id, page_size):
        users.extend(page)
    return users


async def run_pool(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[bool]],
    *,
    size: int,
    label: str,
) -> BatchResult:
    """Run *worker* over *items* with at most *size* in flight.

    A worker returns True on success.  Exceptions count as failures,
    except :class:`StoreUnavailableError`, which is re-raised once every
    worker has finished.
    """
    semaphore = asyncio.Semaphore(max(size, 1))

    async def _bounded(item: T) -> bool:
        async with semaphore:
            return await worker(item)

    outcomes = await asyncio.gather(*(_bounded(i) for i in items), return_exceptions=True)

    result = BatchResult()
    unavailable: StoreUnavailableError | None = None
    for item, outcome in zip(items, outcomes):
        if outcome is True:
            result.success_count += 1
            continue
        result.fail_count += 1
        if isinstance(outcome, StoreUnavailableError):
            unavailable = unavailable or outcome
        elif isinstance(outcome, BaseException):
            logger.error(
                "%s failed for %r: %s", label, item, outcome,
                exc_info=(type(outcome), outcome, outcome.__traceback__),
            )
    if unavailable is not None:
        raise unavailable
    return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class RolloverService:
    """Runs the daily / weekly / monthly jobs over all configured guilds."""

    def __init__(
        self,
        store: RecordStore,
        configs: GuildConfigProvider,
        notifier: Notifier,
        *,
        pool_size: int = 25,
        leader_top_n: int = 5,
        page_size: int = 200,
        monthly_interval_days: int = 30,
    ) -> None:
        self.store = store
        self.configs = configs
        self.notifier = notifier
        self.pool_size = pool_size
        self.leader_top_n = leader_top_n
        self.page_size = page_size
        self.monthly_interval_days = monthly_interval_days

    async def _for_each_guild(
        self,
        job: str,
        handler: Callable[[GuildConfig], Awaitable[BatchResult]],
        include: Callable[[GuildConfig], bool] | None = None,
    ) -> BatchResult:
        """Load each guild's config and run *handler* on it.

        A guild whose config or data cannot be read is logged and skipped;
        only :class:`StoreUnavailableError` stops the remaining guilds.
        """
        total = BatchResult()
        for guild_id in await run_db(self.configs.list_guild_ids):
            try:
                config = await run_db(self.configs.get_config, guild_id)
                if config is None or (include is not None and not include(config)):
                    continue
                result = await handler(config)
            except StoreUnavailableError:
                logger.error("%s halted: store unavailable (guild %s)", job, guild_id)
                raise
            except StoreError:
                logger.exception("%s failed for guild %s", job, guild_id)
                continue
            total.merge(result)
            logger.info(
                "%s guild %s: %d ok, %d failed",
                job, guild_id, result.success_count, result.fail_count,
            )
        return total

    async def run_job_for_guild(self, job: str, guild_id: int, now: datetime) -> BatchResult:
        """Run one named job for a single guild, outside the schedule.

        Raises :class:`LookupError` for an unknown job name and
        :class:`ValueError` when the guild has no configuration.
        """
        handlers: dict[str, Callable[[GuildConfig], Awaitable[BatchResult]]] = {
            DAILY_ROLLOVER_JOB: lambda cfg: self.daily_for_guild(cfg, now),
            WEEKLY_LEADERS_JOB: lambda cfg: self.weekly_leaders_for_guild(cfg, now),
            WEEKLY_REPORT_JOB: lambda cfg: self.weekly_report_for_guild(cfg, now),
            MONTHLY_REPORT_JOB: lambda cfg: self.monthly_report_for_guild(cfg, now),
        }
        handler = handlers.get(job)
        if handler is None:
            raise LookupError(f"Unknown rollover job: {job!r}")
        config = await run_db(self.configs.get_config, guild_id)
        if config is None:
            raise ValueError(f"Guild {guild_id} has no configuration")
        logger.info("Manual %s requested for guild %s", job, guild_id)
        return await handler(config)

    # -------------------------------------------------------------------
    # Daily
    # -------------------------------------------------------------------
    async def run_daily(self, now: datetime) -> BatchResult:
        return await self._for_each_guild(
            "Daily rollover", lambda cfg: self.daily_for_guild(cfg, now)
        )

    async def daily_for_guild(self, config: GuildConfig, now: datetime) -> BatchResult:
        guild_id = config.guild_id

        async def _one(entry: tuple[int, UserProgressionState]) -> bool:
            user_id, state = entry
            outcome = apply_daily_rollover(state, config, now)
            if not outcome.applied:
                return True
            await run_db(self.store.put_user, guild_id, user_id, state)
            if outcome.streak_lost:
                logger.info(
                    "User %s lost a %d-day streak in guild %s",
                    user_id, outcome.lost_streak, guild_id,
                )
                if outcome.roles_to_revoke:
                    await notify_safely(
                        self.notifier.revoke_roles(
                            guild_id, user_id, outcome.roles_to_revoke,
                            f"Lost {outcome.lost_streak}-day streak",
                        ),
                        "revoke_roles",
                    )
                await notify_safely(
                    self.notifier.streak_lost(guild_id, user_id, outcome.lost_streak),
                    "streak_lost",
                )
            return True

        result = BatchResult()
        async for page in iter_user_pages(self.store, guild_id, self.page_size):
            result.merge(await run_pool(page, _one, size=self.pool_size, label="Daily rollover"))
        return result

    # -------------------------------------------------------------------
    # Weekly leaders
    # -------------------------------------------------------------------
    async def run_weekly_leaders(self, now: datetime) -> BatchResult:
        return await self._for_each_guild(
            "Weekly leaders",
            lambda cfg: self.weekly_leaders_for_guild(cfg, now),
            include=lambda cfg: cfg.leader.enabled,
        )

    async def weekly_leaders_for_guild(self, config: GuildConfig, now: datetime) -> BatchResult:
        """Record and announce the week's leaders, then reset ``messages``.

        The two halves carry their own markers for the ISO week, so a run
        that stopped after announcing only performs the reset on retry.
        Returns the result of the reset.
        """
        guild_id = config.guild_id
        period = iso_week(now)
        stats_done = await run_db(
            self.store.has_rollover_marker, guild_id, WEEKLY_LEADERS_JOB, period
        )
        reset_done = await run_db(
            self.store.has_rollover_marker, guild_id, WEEKLY_RESET_JOB, period
        )
        if stats_done and reset_done:
            logger.info("Weekly leaders already ran for guild %s in %s", guild_id, period)
            return BatchResult()

        users = await collect_users(self.store, guild_id, self.page_size)
        if stats_done:
            logger.info("Resuming weekly reset for guild %s in %s", guild_id, period)
        else:
            await self._award_leaders(config, users)
            await run_db(self.store.set_rollover_marker, guild_id, WEEKLY_LEADERS_JOB, period)

        to_reset = [uid for uid, state in users if state.messages > 0]
        result = await run_db(
            self.store.batch_reset_metric, guild_id, to_reset, Metric.MESSAGES, 0
        )
        await run_db(self.store.set_rollover_marker, guild_id, WEEKLY_RESET_JOB, period)
        return result

    async def _award_leaders(
        self, config: GuildConfig, users: Sequence[tuple[int, UserProgressionState]]
    ) -> None:
        guild_id = config.guild_id
        leaders = rank_message_leaders(users, self.leader_top_n)
        winner_ids = {e.user_id for e in leaders}

        async def _record(entry: tuple[int, UserProgressionState]) -> bool:
            user_id, state = entry
            won = user_id in winner_ids
            if not won and state.consecutive_leader_weeks == 0:
                return True
            apply_leader_result(state, won=won)
            return await run_db(self.store.update_user_fields, guild_id, user_id, {
                UserField.MESSAGE_LEADER_WINS: state.message_leader_wins,
                UserField.CONSECUTIVE_LEADER_WEEKS: state.consecutive_leader_weeks,
                UserField.MOST_CONSECUTIVE_LEADER: state.most_consecutive_leader,
            })

        stats = await run_pool(users, _record, size=self.pool_size, label="Leader stats")
        if stats.fail_count:
            logger.warning(
                "Leader stats failed for %d users in guild %s", stats.fail_count, guild_id
            )

        if config.leader.role_id is not None:
            await notify_safely(
                self.notifier.set_leader_role(
                    guild_id, config.leader.role_id, [e.user_id for e in leaders]
                ),
                "set_leader_role",
            )
        if leaders:
            await notify_safely(self.notifier.weekly_leaders(config, leaders), "weekly_leaders")
        logger.info(
            "Weekly leaders for guild %s: %s",
            guild_id, [(e.user_id, e.messages) for e in leaders],
        )

    # -------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------
    async def run_weekly_report(self, now: datetime) -> BatchResult:
        return await self._for_each_guild(
            "Weekly report",
            lambda cfg: self.weekly_report_for_guild(cfg, now),
            include=lambda cfg: cfg.reports.weekly_channel_id is not None,
        )

    async def weekly_report_for_guild(self, config: GuildConfig, now: datetime) -> BatchResult:
        users = await collect_users(self.store, config.guild_id, self.page_size)
        top = await run_db(
            self.store.query_metric, config.guild_id, Metric.MESSAGES, REPORT_TOP_N
        )
        report = build_weekly_report(
            config.guild_id, users, [(uid, v) for uid, v in top if v > 0]
        )
        await notify_safely(self.notifier.weekly_report(config, report), "weekly_report")
        return BatchResult(success_count=1)

    async def run_monthly_report(self, now: datetime) -> BatchResult:
        return await self._for_each_guild(
            "Monthly report",
            lambda cfg: self.monthly_report_for_guild(cfg, now),
            include=lambda cfg: cfg.reports.monthly_channel_id is not None,
        )

    async def monthly_report_for_guild(self, config: GuildConfig, now: datetime) -> BatchResult:
        """Post the report covering the last ``monthly_interval_days`` days."""
        active_since = utc_day(now) - timedelta(days=self.monthly_interval_days)
        users = await collect_users(self.store, config.guild_id, self.page_size)
        top = await run_db(
            self.store.query_metric, config.guild_id, Metric.HIGHEST_STREAK, REPORT_TOP_N
        )
        report = build_monthly_report(
            config.guild_id,
            users,
            active_since=active_since,
            top_streaks=[(uid, v) for uid, v in top if v > 0],
        )
        await notify_safely(self.notifier.monthly_report(config, report), "monthly_report")
        return BatchResult(success_count=1)
