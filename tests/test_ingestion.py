"""
tests/test_ingestion.py — Message ingestion pipeline
=====================================================

Drives :class:`IngestionPipeline` with a real SQLite-backed store and
config provider, and a mocked notifier.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from stitches.engine.state import Experience, Metric, UserProgressionState
from stitches.services.config_service import GuildConfigProvider
from stitches.services.ingestion_service import IngestionPipeline, IngestStatus
from stitches.services.record_store import (
    IndexWriteError,
    SqlRecordStore,
    StoreError,
    StoreUnavailableError,
)

GUILD = 7
USER = 500
CHANNEL = 900

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def store(db_engine):
    return SqlRecordStore(db_engine)


@pytest.fixture
def configs(db_engine):
    provider = GuildConfigProvider(db_engine)
    provider.save_config(GUILD, {
        "streakSystem": {"enabled": True, "streakThreshold": 3, "role1day": "11"},
        "levelSystem": {"enabled": True, "xpPerMessage": 10, "roleLevel1": "22"},
    })
    return provider


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def pipeline(store, configs, notifier):
    return IngestionPipeline(store, configs, notifier)


def _ingest(pipeline, content: str, at: datetime, user_id: int = USER):
    return run_async(pipeline.ingest(GUILD, user_id, CHANNEL, content, at))


class TestIngest:
    def test_first_message_creates_record(self, pipeline, store):
        result = _ingest(pipeline, "hello", T0)
        assert result.status is IngestStatus.ACCEPTED
        state = store.get_user(GUILD, USER)
        assert state.messages == 1
        assert state.threshold == 2
        assert state.experience.total_xp == 10

    def test_messages_inside_cooldown_are_debounced(self, pipeline, store):
        _ingest(pipeline, "first message", T0)
        result = _ingest(pipeline, "a different thing", T0 + timedelta(milliseconds=2999))
        assert result.status is IngestStatus.DEBOUNCED
        assert store.get_user(GUILD, USER).messages == 1

    def test_repeat_message_dropped_without_mutation(self, pipeline, store):
        _ingest(pipeline, "helloworld", T0)
        result = _ingest(pipeline, "helloworlx", T0 + timedelta(milliseconds=1000))
        assert result.status is IngestStatus.DROPPED
        assert store.get_user(GUILD, USER).messages == 1

    def test_same_pair_five_seconds_apart_accepted(self, pipeline, store):
        _ingest(pipeline, "helloworld", T0)
        result = _ingest(pipeline, "helloworlx", T0 + timedelta(seconds=5))
        assert result.accepted
        assert store.get_user(GUILD, USER).messages == 2

    def test_streak_credit_grants_role_and_announces(self, pipeline, store, notifier):
        for i in range(3):
            _ingest(pipeline, f"message number {i}", T0 + timedelta(seconds=10 * i))

        state = store.get_user(GUILD, USER)
        assert state.streak == 1
        assert state.received_daily is True
        notifier.grant_role.assert_any_await(GUILD, USER, 11, "Progression reward")
        notifier.streak_increased.assert_awaited_once()
        credit = notifier.streak_increased.await_args.args[2]
        assert credit.new_streak == 1
        assert store.query_metric(GUILD, Metric.STREAK, 5) == [(USER, 1.0)]

    def test_level_up_announced(self, pipeline, store, notifier):
        store.put_user(GUILD, USER, UserProgressionState(
            threshold=3, experience=Experience(total_xp=95, level=0),
        ))
        _ingest(pipeline, "level me", T0)
        notifier.level_up.assert_awaited_once()
        event = notifier.level_up.await_args.args[2]
        assert (event.old_level, event.new_level) == (0, 1)
        notifier.grant_role.assert_any_await(GUILD, USER, 22, "Progression reward")

    def test_unconfigured_guild_only_counts(self, store, db_engine, notifier):
        pipeline = IngestionPipeline(store, GuildConfigProvider(db_engine), notifier)
        run_async(pipeline.ingest(999, USER, CHANNEL, "hi", T0))
        state = store.get_user(999, USER)
        assert state.messages == 1
        assert state.streak == 0
        assert state.experience.total_xp == 0
        notifier.streak_increased.assert_not_awaited()

    def test_notifier_failure_does_not_fail_ingest(self, pipeline, store, notifier):
        notifier.grant_role.side_effect = RuntimeError("discord down")
        notifier.streak_increased.side_effect = RuntimeError("discord down")
        for i in range(3):
            result = _ingest(pipeline, f"msg {i}", T0 + timedelta(seconds=10 * i))
        assert result.accepted
        assert store.get_user(GUILD, USER).streak == 1

    def test_store_failure_reported(self, pipeline, store):
        with patch.object(store, "put_user", side_effect=StoreError("write failed")):
            result = _ingest(pipeline, "hello", T0)
        assert result.status is IngestStatus.STORE_FAILED
        assert result.error == "write failed"

    def test_index_failure_still_announces(self, pipeline, store, notifier):
        with patch.object(store, "_write_index", side_effect=IndexWriteError("index down")):
            results = [
                _ingest(pipeline, f"message number {i}", T0 + timedelta(seconds=10 * i))
                for i in range(3)
            ]
        assert all(r.status is IngestStatus.ACCEPTED for r in results)
        assert results[-1].error == "index down"
        assert store.get_user(GUILD, USER).streak == 1
        notifier.streak_increased.assert_awaited_once()

    def test_unreachable_config_store_reported(self, store, db_engine, notifier):
        pipeline = IngestionPipeline(store, GuildConfigProvider(db_engine), notifier)
        err = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch("stitches.services.record_store.Session.connection", side_effect=err):
            result = _ingest(pipeline, "hello", T0)
        assert result.status is IngestStatus.STORE_FAILED

    @pytest.mark.parametrize("multiplier", ["nan", "inf", "0", "-2"])
    def test_unusable_level_multiplier_does_not_level_every_message(
        self, pipeline, store, configs, notifier, multiplier
    ):
        configs.set_value(GUILD, "levelSystem", "levelMultiplier", multiplier)
        store.put_user(GUILD, USER, UserProgressionState(
            threshold=3, experience=Experience(total_xp=20, level=1),
        ))
        result = _ingest(pipeline, "just chatting", T0)
        assert result.accepted
        assert store.get_user(GUILD, USER).experience == Experience(total_xp=30, level=1)
        notifier.level_up.assert_not_awaited()

    def test_purge_caches(self, pipeline):
        _ingest(pipeline, "hello", T0)
        assert pipeline.purge_caches() == 0
