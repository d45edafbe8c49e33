"""
stitches.services.scheduler — Persistent rollover scheduler
============================================================

Each job keeps its ``next_run_at`` in the ``scheduled_jobs`` table.  A
short periodic tick (driven by the tasks cog) runs every job whose
``next_run_at`` has passed, then recomputes the next run from the job's
schedule.  Restarts never lose or double-fire a run; a bot that was
offline across several periods runs each overdue job once.

Default schedule (UTC):

==================  ==========================
daily_rollover      every day 00:00
weekly_report       Sunday 17:55
weekly_leaders      Sunday 18:00
monthly_report      every ``monthly_report_interval_days`` days
==================  ==========================
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from stitches.database.engine import get_session, run_db
from stitches.database.models import ScheduledJob
from stitches.services.record_store import StoreUnavailableError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from stitches.services.rollover_service import RolloverService

logger = logging.getLogger(__name__)

NextRun = Callable[[datetime], datetime]


def as_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------
def daily_at(hour: int = 0, minute: int = 0) -> NextRun:
    """Next occurrence of ``hour:minute`` UTC strictly after the given time."""
    at = time(hour, minute, tzinfo=timezone.utc)

    def _next(after: datetime) -> datetime:
        after = as_utc(after)
        candidate = datetime.combine(after.date(), at)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    return _next


def weekly_at(weekday: int, hour: int, minute: int = 0) -> NextRun:
    """*weekday* follows :meth:`datetime.weekday` (Monday 0, Sunday 6)."""
    at = time(hour, minute, tzinfo=timezone.utc)

    def _next(after: datetime) -> datetime:
        after = as_utc(after)
        days_ahead = (weekday - after.weekday()) % 7
        candidate = datetime.combine(after.date() + timedelta(days=days_ahead), at)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    return _next


def every(interval: timedelta) -> NextRun:
    def _next(after: datetime) -> datetime:
        return as_utc(after) + interval

    return _next


@dataclass(frozen=True, slots=True)
class Job:
    name: str
    next_run: NextRun
    run: Callable[[datetime], Awaitable[Any]]


def default_jobs(rollover: RolloverService, *, monthly_interval_days: int = 30) -> list[Job]:
    return [
        Job("daily_rollover", daily_at(0, 0), rollover.run_daily),
        Job("weekly_report", weekly_at(6, 17, 55), rollover.run_weekly_report),
        Job("weekly_leaders", weekly_at(6, 18, 0), rollover.run_weekly_leaders),
        Job(
            "monthly_report",
            every(timedelta(days=monthly_interval_days)),
            rollover.run_monthly_report,
        ),
    ]


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
class RolloverScheduler:
    """Runs due jobs on each :meth:`tick`."""

    def __init__(self, engine: Engine, jobs: list[Job]) -> None:
        self._engine = engine
        self.jobs = {job.name: job for job in jobs}

    # -------------------------------------------------------------------
    # Persistence (sync — run via run_db)
    # -------------------------------------------------------------------
    def ensure_jobs(self, now: datetime) -> None:
        """Insert a row for every job that has none yet."""
        with get_session(self._engine) as session:
            existing = set(session.scalars(select(ScheduledJob.name)))
            for name, job in self.jobs.items():
                if name in existing:
                    continue
                next_run = job.next_run(now)
                session.add(ScheduledJob(name=name, next_run_at=next_run))
                logger.info("Scheduled %s for %s", name, next_run.isoformat())

    def due_jobs(self, now: datetime) -> list[str]:
        with get_session(self._engine) as session:
            rows = session.scalars(
                select(ScheduledJob.name)
                .where(ScheduledJob.next_run_at <= as_utc(now))
                .order_by(ScheduledJob.next_run_at, ScheduledJob.name)
            )
            return [name for name in rows if name in self.jobs]

    def record_run(
        self, name: str, now: datetime, status: str, next_run_at: datetime | None
    ) -> None:
        with get_session(self._engine) as session:
            row = session.get(ScheduledJob, name)
            if row is None:
                return
            row.last_run_at = as_utc(now)
            row.last_status = status
            if next_run_at is not None:
                row.next_run_at = next_run_at

    def next_runs(self) -> dict[str, datetime]:
        with get_session(self._engine) as session:
            return {
                row.name: as_utc(row.next_run_at)
                for row in session.scalars(select(ScheduledJob))
            }

    # -------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------
    async def tick(self, now: datetime | None = None) -> list[str]:
        """Run every due job.  Returns the names of jobs that ran."""
        now = as_utc(now or datetime.now(timezone.utc))
        await run_db(self.ensure_jobs, now)
        ran: list[str] = []
        for name in await run_db(self.due_jobs, now):
            job = self.jobs[name]
            logger.info("Running scheduled job %s", name, extra={"task": name})
            try:
                result = await job.run(now)
            except StoreUnavailableError:
                # Leave next_run_at untouched so the next tick retries.
                logger.error("Job %s halted: store unavailable", name, extra={"task": name})
                await run_db(self.record_run, name, now, "unavailable", None)
                continue
            except Exception:
                logger.exception("Job %s failed", name, extra={"task": name})
                await run_db(self.record_run, name, now, "failed", job.next_run(now))
                continue
            logger.info("Job %s finished: %s", name, result, extra={"task": name})
            await run_db(self.record_run, name, now, "ok", job.next_run(now))
            ran.append(name)
        return ran
