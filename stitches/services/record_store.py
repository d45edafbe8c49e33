"""
stitches.services.record_store — Record Store Adapter
======================================================

The core reads and writes engagement state only through the abstract
:class:`RecordStore`.  :class:`SqlRecordStore` implements it over the
SQLAlchemy models in :mod:`stitches.database.models`.

Every full write (:meth:`RecordStore.put_user`) and partial write
(:meth:`RecordStore.update_user_fields`) also refreshes the
``metric_index`` rows for the tracked metrics it touches.  The primary
row and its index rows are committed in **separate transactions**: if the
index write fails the primary change stands and the index lags until the
next full ``put_user`` for that user rewrites it.

All methods are synchronous; async callers go through
:func:`~stitches.database.engine.run_db`.
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from stitches.constants import BATCH_CHUNK_SIZE, BATCH_MAX_ATTEMPTS, LEADERBOARD_MAX_LIMIT
from stitches.database.models import MetricIndex, RolloverMarker, UserProgress
from stitches.engine.state import (
    Experience,
    HeatmapEntry,
    LastMessage,
    Metric,
    Milestone,
    UserProgressionState,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class StoreError(Exception):
    """A single store operation failed.

    ``transient`` marks failures worth retrying (lock timeouts, serialization
    failures, dropped statements).
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class StoreUnavailableError(StoreError):
    """The store could not be reached at all.  Halts the current job."""


class IndexWriteError(StoreError):
    """The primary record was committed but its metric index rows were not.

    Callers may treat the write as done; the index catches up on the next
    full :meth:`RecordStore.put_user` for that user.
    """


# ---------------------------------------------------------------------------
# Typed partial updates
# ---------------------------------------------------------------------------
class UserField(enum.Enum):
    """Scalar fields writable through :meth:`RecordStore.update_user_fields`.

    Value is ``(column name, tracked metric or None)``.
    """

    STREAK = ("streak", Metric.STREAK)
    HIGHEST_STREAK = ("highest_streak", Metric.HIGHEST_STREAK)
    THRESHOLD = ("threshold", None)
    RECEIVED_DAILY = ("received_daily", None)
    MESSAGES = ("messages", Metric.MESSAGES)
    TOTAL_MESSAGES = ("total_messages", Metric.TOTAL_MESSAGES)
    TOTAL_XP = ("total_xp", Metric.TOTAL_XP)
    LEVEL = ("level", Metric.LEVEL)
    MESSAGE_LEADER_WINS = ("message_leader_wins", Metric.MESSAGE_LEADER_WINS)
    CONSECUTIVE_LEADER_WEEKS = ("consecutive_leader_weeks", None)
    MOST_CONSECUTIVE_LEADER = ("most_consecutive_leader", Metric.MOST_CONSECUTIVE_LEADER)
    ACTIVE_DAYS_COUNT = ("active_days_count", Metric.ACTIVE_DAYS_COUNT)
    LONGEST_INACTIVE_PERIOD = ("longest_inactive_period", Metric.LONGEST_INACTIVE_PERIOD)

    @property
    def column(self) -> str:
        return self.value[0]

    @property
    def metric(self) -> Metric | None:
        return self.value[1]

    @classmethod
    def for_metric(cls, metric: Metric) -> UserField | None:
        for f in cls:
            if f.metric is metric:
                return f
        return None


# ---------------------------------------------------------------------------
# Batch result
# ---------------------------------------------------------------------------
@dataclass
class BatchResult:
    success_count: int = 0
    fail_count: int = 0

    def merge(self, other: BatchResult) -> BatchResult:
        self.success_count += other.success_count
        self.fail_count += other.fail_count
        return self

    @property
    def total(self) -> int:
        return self.success_count + self.fail_count


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------
class RecordStore(abc.ABC):
    """Persistence contract consumed by the ingestion and rollover core."""

    @abc.abstractmethod
    def get_user(self, guild_id: int, user_id: int) -> UserProgressionState | None: ...

    @abc.abstractmethod
    def put_user(self, guild_id: int, user_id: int, state: UserProgressionState) -> None:
        """Write the full record and every tracked metric's index row.

        Raises :class:`IndexWriteError` when only the index write failed.
        """

    @abc.abstractmethod
    def update_user_fields(
        self, guild_id: int, user_id: int, fields: Mapping[UserField, Any]
    ) -> bool:
        """Partial update.  Returns False when the user has no record."""

    @abc.abstractmethod
    def list_user_page(
        self, guild_id: int, after_user_id: int | None, limit: int
    ) -> list[tuple[int, UserProgressionState]]:
        """One keyset page ordered by user id, strictly after *after_user_id*."""

    def list_users(
        self, guild_id: int, page_size: int = 200
    ) -> Iterator[tuple[int, UserProgressionState]]:
        """Lazily walk every user in *guild_id*, one page at a time."""
        after: int | None = None
        while True:
            page = self.list_user_page(guild_id, after, page_size)
            yield from page
            if len(page) < page_size:
                return
            after = page[-1][0]

    @abc.abstractmethod
    def query_metric(
        self, guild_id: int, metric: Metric, limit: int
    ) -> list[tuple[int, float]]:
        """Top *limit* ``(user_id, value)`` from the metric index."""

    @abc.abstractmethod
    def batch_reset_metric(
        self, guild_id: int, user_ids: Sequence[int], metric: Metric, value: float = 0
    ) -> BatchResult: ...

    @abc.abstractmethod
    def has_rollover_marker(self, guild_id: int, job: str, period: str) -> bool: ...

    @abc.abstractmethod
    def set_rollover_marker(self, guild_id: int, job: str, period: str) -> None: ...


# ---------------------------------------------------------------------------
# Session handling
# ---------------------------------------------------------------------------
@contextmanager
def store_session(engine: Engine) -> Iterator[Session]:
    """Commit-or-rollback session with SQLAlchemy errors translated.

    Failing to obtain a connection raises :class:`StoreUnavailableError`;
    any later failure raises :class:`StoreError`.  Shared by every
    component that reads or writes through the store's engine.
    """
    session = Session(engine)
    try:
        try:
            session.connection()
        except (OperationalError, PoolTimeoutError) as exc:
            raise StoreUnavailableError(f"Store unreachable: {exc}") from exc
        yield session
        session.commit()
    except StoreError:
        session.rollback()
        raise
    except OperationalError as exc:
        session.rollback()
        raise StoreError(str(exc), transient=True) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError(str(exc)) from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Row ↔ state mapping
# ---------------------------------------------------------------------------
_SCALAR_COLUMNS = (
    "streak",
    "highest_streak",
    "threshold",
    "received_daily",
    "messages",
    "total_messages",
    "boosters",
    "message_leader_wins",
    "consecutive_leader_weeks",
    "most_consecutive_leader",
    "active_days_count",
    "consecutive_inactive_days",
    "longest_inactive_period",
    "days_tracked",
    "average_messages_per_day",
    "last_streak_loss",
    "last_daily_rollover",
)


def state_from_row(row: UserProgress) -> UserProgressionState:
    state = UserProgressionState(
        **{col: getattr(row, col) for col in _SCALAR_COLUMNS},
        experience=Experience(total_xp=row.total_xp or 0, level=row.level or 0),
    )
    state.message_heatmap = [
        HeatmapEntry(date=e["date"], messages=int(e.get("messages", 0)))
        for e in (row.message_heatmap or [])
    ]
    state.milestones = [
        Milestone(milestone=int(m["milestone"]), date=m["date"])
        for m in (row.milestones or [])
    ]
    state.roles_achieved = [int(r) for r in (row.roles_achieved or [])]
    state.channels_participated = [int(c) for c in (row.channels_participated or [])]
    lm = row.last_message or {}
    state.last_message = LastMessage(
        time=float(lm.get("time", 0.0)),
        content=lm.get("content", ""),
        date=lm.get("date"),
    )
    return state


def _write_state(row: UserProgress, state: UserProgressionState) -> None:
    for col in _SCALAR_COLUMNS:
        setattr(row, col, getattr(state, col))
    row.total_xp = state.experience.total_xp
    row.level = state.experience.level
    row.message_heatmap = [{"date": e.date, "messages": e.messages} for e in state.message_heatmap]
    row.milestones = [{"milestone": m.milestone, "date": m.date} for m in state.milestones]
    row.roles_achieved = list(state.roles_achieved)
    row.channels_participated = list(state.channels_participated)
    row.last_message = {
        "time": state.last_message.time,
        "content": state.last_message.content,
        "date": state.last_message.date,
    }


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------
class SqlRecordStore(RecordStore):
    """:class:`RecordStore` over SQLAlchemy.

    Usage::

        store = SqlRecordStore(engine)
        state = await run_db(store.get_user, guild_id, user_id)
    """

    def __init__(
        self,
        engine: Engine,
        *,
        chunk_size: int = BATCH_CHUNK_SIZE,
        max_attempts: int = BATCH_MAX_ATTEMPTS,
        retry_delay: float = 0.2,
    ) -> None:
        self._engine = engine
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def _session(self):
        return store_session(self._engine)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_user(self, guild_id: int, user_id: int) -> UserProgressionState | None:
        with self._session() as session:
            row = session.get(UserProgress, (guild_id, user_id))
            return state_from_row(row) if row else None

    def list_user_page(
        self, guild_id: int, after_user_id: int | None, limit: int
    ) -> list[tuple[int, UserProgressionState]]:
        stmt = select(UserProgress).where(UserProgress.guild_id == guild_id)
        if after_user_id is not None:
            stmt = stmt.where(UserProgress.user_id > after_user_id)
        stmt = stmt.order_by(UserProgress.user_id).limit(limit)
        with self._session() as session:
            return [(row.user_id, state_from_row(row)) for row in session.scalars(stmt)]

    def query_metric(
        self, guild_id: int, metric: Metric, limit: int
    ) -> list[tuple[int, float]]:
        if limit <= 0:
            return []
        limit = min(limit, LEADERBOARD_MAX_LIMIT)
        stmt = (
            select(MetricIndex.user_id, MetricIndex.value)
            .where(MetricIndex.guild_id == guild_id, MetricIndex.metric == metric.value)
            .order_by(MetricIndex.value.desc(), MetricIndex.user_id)
            .limit(limit)
        )
        with self._session() as session:
            return [(uid, value) for uid, value in session.execute(stmt)]

    def has_rollover_marker(self, guild_id: int, job: str, period: str) -> bool:
        with self._session() as session:
            return session.get(RolloverMarker, (guild_id, job, period)) is not None

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def put_user(self, guild_id: int, user_id: int, state: UserProgressionState) -> None:
        with self._session() as session:
            row = session.get(UserProgress, (guild_id, user_id))
            if row is None:
                row = UserProgress(guild_id=guild_id, user_id=user_id)
                session.add(row)
            _write_state(row, state)

        self._write_index(guild_id, user_id, state.metric_values())

    def update_user_fields(
        self, guild_id: int, user_id: int, fields: Mapping[UserField, Any]
    ) -> bool:
        if not fields:
            return True
        values = {f.column: v for f, v in fields.items()}
        with self._session() as session:
            result = session.execute(
                update(UserProgress)
                .where(UserProgress.guild_id == guild_id, UserProgress.user_id == user_id)
                .values(**values)
            )
            if result.rowcount == 0:
                return False

        tracked = {f.metric: float(v) for f, v in fields.items() if f.metric is not None}
        if tracked:
            self._write_index(guild_id, user_id, tracked)
        return True

    def _write_index(
        self, guild_id: int, user_id: int, values: Mapping[Metric, float]
    ) -> None:
        try:
            with self._session() as session:
                for metric, value in values.items():
                    session.merge(MetricIndex(
                        guild_id=guild_id,
                        metric=metric.value,
                        user_id=user_id,
                        value=float(value),
                    ))
        except StoreError as exc:
            logger.exception(
                "Metric index write failed for user %s in guild %s "
                "(primary record saved; index will repair on next full write)",
                user_id, guild_id,
            )
            raise IndexWriteError(str(exc), transient=exc.transient) from exc

    def set_rollover_marker(self, guild_id: int, job: str, period: str) -> None:
        try:
            with self._session() as session:
                session.add(RolloverMarker(guild_id=guild_id, job=job, period=period))
        except StoreError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                logger.debug("Rollover marker %s/%s already set for guild %s", job, period, guild_id)
                return
            raise

    # -------------------------------------------------------------------
    # Batch reset
    # -------------------------------------------------------------------
    def batch_reset_metric(
        self, guild_id: int, user_ids: Sequence[int], metric: Metric, value: float = 0
    ) -> BatchResult:
        """Set *metric* to *value* for *user_ids*, in chunks.

        Each chunk is one transaction retried up to ``max_attempts`` times on
        transient errors.  Exhausted or hard-failed chunks count as failures;
        only :class:`StoreUnavailableError` propagates.
        """
        field = UserField.for_metric(metric)
        if field is None:
            raise ValueError(f"Metric {metric.value!r} is not directly writable")

        result = BatchResult()
        ids = list(user_ids)
        for start in range(0, len(ids), self.chunk_size):
            chunk = ids[start:start + self.chunk_size]
            if self._reset_chunk_with_retry(guild_id, chunk, field, value):
                result.success_count += len(chunk)
            else:
                result.fail_count += len(chunk)

        logger.info(
            "Batch reset %s=%s in guild %s: %d ok, %d failed",
            metric.value, value, guild_id, result.success_count, result.fail_count,
        )
        return result

    def _reset_chunk_with_retry(
        self, guild_id: int, chunk: list[int], field: UserField, value: float
    ) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._reset_chunk(guild_id, chunk, field, value)
                return True
            except StoreUnavailableError:
                raise
            except StoreError as exc:
                if not exc.transient:
                    logger.error(
                        "Batch reset chunk failed permanently in guild %s: %s", guild_id, exc
                    )
                    return False
                logger.warning(
                    "Batch reset chunk attempt %d/%d failed in guild %s: %s",
                    attempt, self.max_attempts, guild_id, exc,
                )
                if attempt < self.max_attempts and self.retry_delay:
                    time.sleep(self.retry_delay * 2 ** (attempt - 1))
        return False

    def _reset_chunk(
        self, guild_id: int, chunk: list[int], field: UserField, value: float
    ) -> None:
        with self._session() as session:
            session.execute(
                update(UserProgress)
                .where(UserProgress.guild_id == guild_id, UserProgress.user_id.in_(chunk))
                .values({field.column: value})
            )
            session.execute(
                update(MetricIndex)
                .where(
                    MetricIndex.guild_id == guild_id,
                    MetricIndex.metric == field.metric.value,
                    MetricIndex.user_id.in_(chunk),
                )
                .values(value=float(value))
            )

