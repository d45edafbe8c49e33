"""
tests/test_record_store.py — SqlRecordStore against in-memory SQLite
=====================================================================

Covers the primary-record round trip, metric-index fan-out, keyset
pagination, ranked queries, chunked batch resets with retry accounting,
and rollover markers.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from stitches.database.models import MetricIndex
from stitches.engine.state import (
    Experience,
    HeatmapEntry,
    LastMessage,
    Metric,
    Milestone,
    UserProgressionState,
)
from stitches.services.record_store import (
    BatchResult,
    SqlRecordStore,
    StoreError,
    StoreUnavailableError,
    UserField,
)

GUILD = 1001


@pytest.fixture
def store(db_engine):
    return SqlRecordStore(db_engine, chunk_size=2, max_attempts=3, retry_delay=0)


def _index(engine, user_id: int, metric: Metric) -> float | None:
    with Session(engine) as session:
        return session.scalar(
            select(MetricIndex.value).where(
                MetricIndex.guild_id == GUILD,
                MetricIndex.user_id == user_id,
                MetricIndex.metric == metric.value,
            )
        )


class TestPutAndGet:
    def test_missing_user(self, store):
        assert store.get_user(GUILD, 1) is None

    def test_round_trip(self, store):
        state = UserProgressionState(
            streak=3,
            highest_streak=5,
            threshold=2,
            messages=12,
            total_messages=120,
            experience=Experience(total_xp=40, level=2),
            boosters=1.5,
            message_heatmap=[HeatmapEntry("2026-03-10", 12)],
            milestones=[Milestone(3, "2026-03-10T12:00:00+00:00")],
            roles_achieved=[11, 22],
            channels_participated=[500, 501],
            last_message=LastMessage(time=1.5e12, content="hey", date="2026-03-10"),
            last_daily_rollover="2026-03-10",
        )
        store.put_user(GUILD, 1, state)
        assert store.get_user(GUILD, 1) == state

    def test_put_overwrites(self, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=1))
        store.put_user(GUILD, 1, UserProgressionState(messages=9))
        assert store.get_user(GUILD, 1).messages == 9

    def test_put_writes_every_metric(self, store, db_engine):
        store.put_user(GUILD, 1, UserProgressionState(
            streak=4, highest_streak=6, average_messages_per_day=2.5,
            experience=Experience(total_xp=10, level=3),
        ))
        assert _index(db_engine, 1, Metric.STREAK) == 4
        assert _index(db_engine, 1, Metric.HIGHEST_STREAK) == 6
        assert _index(db_engine, 1, Metric.LEVEL) == 3
        assert _index(db_engine, 1, Metric.AVERAGE_MESSAGES_PER_DAY) == 2.5
        with Session(db_engine) as session:
            rows = session.scalars(
                select(MetricIndex).where(MetricIndex.user_id == 1)
            ).all()
        assert len(rows) == len(Metric)


class TestUpdateUserFields:
    def test_missing_user_is_noop(self, store):
        assert store.update_user_fields(GUILD, 404, {UserField.MESSAGES: 3}) is False
        assert store.get_user(GUILD, 404) is None

    def test_partial_update_and_index(self, store, db_engine):
        store.put_user(GUILD, 1, UserProgressionState(streak=2, highest_streak=2))
        assert store.update_user_fields(GUILD, 1, {
            UserField.STREAK: 7,
            UserField.HIGHEST_STREAK: 7,
            UserField.RECEIVED_DAILY: True,
        })
        state = store.get_user(GUILD, 1)
        assert (state.streak, state.highest_streak, state.received_daily) == (7, 7, True)
        assert _index(db_engine, 1, Metric.STREAK) == 7

    def test_untracked_field_leaves_index_alone(self, store, db_engine):
        store.put_user(GUILD, 1, UserProgressionState(threshold=10))
        store.update_user_fields(GUILD, 1, {UserField.THRESHOLD: 3})
        assert store.get_user(GUILD, 1).threshold == 3

    def test_every_field_is_writable(self, store):
        store.put_user(GUILD, 1, UserProgressionState())
        for f in UserField:
            value = True if f is UserField.RECEIVED_DAILY else 3
            assert store.update_user_fields(GUILD, 1, {f: value}), f
        state = store.get_user(GUILD, 1)
        assert (state.streak, state.messages, state.experience.level) == (3, 3, 3)

    def test_for_metric(self):
        assert UserField.for_metric(Metric.MESSAGES) is UserField.MESSAGES
        assert UserField.for_metric(Metric.AVERAGE_MESSAGES_PER_DAY) is None


class TestListUsers:
    def test_pages_cover_every_user_once(self, store):
        for uid in range(1, 8):
            store.put_user(GUILD, uid, UserProgressionState(messages=uid))
        store.put_user(GUILD + 1, 99, UserProgressionState())

        seen = [uid for uid, _ in store.list_users(GUILD, page_size=3)]
        assert seen == list(range(1, 8))

    def test_page_is_keyset(self, store):
        for uid in (5, 10, 15):
            store.put_user(GUILD, uid, UserProgressionState())
        page = store.list_user_page(GUILD, after_user_id=5, limit=10)
        assert [uid for uid, _ in page] == [10, 15]

    def test_empty_guild(self, store):
        assert list(store.list_users(GUILD)) == []


class TestQueryMetric:
    def test_sorted_desc_with_user_id_ties(self, store):
        for uid, messages in [(1, 5), (2, 30), (3, 30), (4, 0)]:
            store.put_user(GUILD, uid, UserProgressionState(messages=messages))
        assert store.query_metric(GUILD, Metric.MESSAGES, 10) == [
            (2, 30.0), (3, 30.0), (1, 5.0), (4, 0.0),
        ]

    def test_limit_is_clamped(self, store):
        for uid in range(1, 60):
            store.put_user(GUILD, uid, UserProgressionState(streak=uid, highest_streak=uid))
        assert len(store.query_metric(GUILD, Metric.STREAK, 500)) == 50
        assert store.query_metric(GUILD, Metric.STREAK, 0) == []
        assert store.query_metric(GUILD, Metric.STREAK, -5) == []

    def test_reflects_latest_write(self, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=3))
        store.update_user_fields(GUILD, 1, {UserField.MESSAGES: 42})
        assert store.query_metric(GUILD, Metric.MESSAGES, 5) == [(1, 42.0)]


class TestBatchReset:
    def test_resets_primary_and_index(self, store):
        for uid in range(1, 6):
            store.put_user(GUILD, uid, UserProgressionState(messages=uid * 10))
        result = store.batch_reset_metric(GUILD, [1, 2, 3, 4, 5], Metric.MESSAGES, 0)
        assert result == BatchResult(success_count=5, fail_count=0)
        assert all(s.messages == 0 for _, s in store.list_users(GUILD))
        assert {v for _, v in store.query_metric(GUILD, Metric.MESSAGES, 10)} == {0.0}

    def test_transient_failure_is_retried(self, store):
        real = store._reset_chunk
        calls = {"n": 0}

        def flaky(*args):
            calls["n"] += 1
            if calls["n"] <= 2:
                raise StoreError("lock timeout", transient=True)
            return real(*args)

        store.put_user(GUILD, 1, UserProgressionState(messages=9))
        with patch.object(store, "_reset_chunk", side_effect=flaky):
            result = store.batch_reset_metric(GUILD, [1], Metric.MESSAGES)
        assert result.success_count == 1
        assert calls["n"] == 3

    def test_exhausted_retries_count_as_failures(self, store):
        with patch.object(
            store, "_reset_chunk", side_effect=StoreError("busy", transient=True)
        ) as mock:
            result = store.batch_reset_metric(GUILD, [1, 2, 3], Metric.MESSAGES)
        # chunk_size=2 → two chunks, three attempts each
        assert mock.call_count == 6
        assert result == BatchResult(success_count=0, fail_count=3)

    def test_permanent_failure_not_retried(self, store):
        outcomes = [StoreError("bad"), None]
        with patch.object(store, "_reset_chunk", side_effect=outcomes) as mock:
            result = store.batch_reset_metric(GUILD, [1, 2, 3], Metric.MESSAGES)
        assert mock.call_count == 2
        assert result == BatchResult(success_count=1, fail_count=2)

    def test_unavailable_propagates(self, store):
        with patch.object(
            store, "_reset_chunk", side_effect=StoreUnavailableError("down")
        ), pytest.raises(StoreUnavailableError):
            store.batch_reset_metric(GUILD, [1], Metric.MESSAGES)

    def test_unwritable_metric_rejected(self, store):
        with pytest.raises(ValueError):
            store.batch_reset_metric(GUILD, [1], Metric.AVERAGE_MESSAGES_PER_DAY)


class TestSessionErrors:
    def test_unreachable_store(self, store):
        err = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch("stitches.services.record_store.Session.connection", side_effect=err), \
                pytest.raises(StoreUnavailableError):
            store.get_user(GUILD, 1)


class TestRolloverMarkers:
    def test_set_and_check(self, store):
        assert not store.has_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
        store.set_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
        assert store.has_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
        assert not store.has_rollover_marker(GUILD, "weekly_leaders", "2026-W12")

    def test_setting_twice_is_harmless(self, store):
        store.set_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
        store.set_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
        assert store.has_rollover_marker(GUILD, "weekly_leaders", "2026-W11")
