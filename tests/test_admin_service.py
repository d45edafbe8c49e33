"""
tests/test_admin_service.py — Moderator edits, resets, config and leaderboards
===============================================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import discord
import pytest
from sqlalchemy.exc import OperationalError

from stitches.engine.guild_config import GuildConfig
from stitches.engine.state import Experience, Metric, UserProgressionState
from stitches.services.admin_service import (
    AdminService,
    EditableField,
    EditOutcome,
    BOT_PERMISSIONS,
    InvalidEditError,
    debug_user_fields,
    parse_edit_value,
    permission_checklist,
    plan_edit,
)
from stitches.services.config_service import GuildConfigProvider, coerce_config_value
from stitches.services.leaderboard_service import clamp_limit, query_leaderboard
from stitches.services.record_store import (
    BatchResult,
    SqlRecordStore,
    StoreUnavailableError,
    UserField,
)

GUILD = 3


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


CONFIG = GuildConfig.from_dict(GUILD, {
    "streakSystem": {"enabled": True, "streakThreshold": 10, "role3day": "30", "role7day": "70"},
    "levelSystem": {"enabled": True, "roleLevel2": "200", "roleLevel5": "500"},
})


@pytest.fixture
def store(db_engine):
    return SqlRecordStore(db_engine, retry_delay=0)


@pytest.fixture
def configs(db_engine):
    provider = GuildConfigProvider(db_engine)
    provider.save_config(GUILD, {
        "streakSystem": {"enabled": True, "streakThreshold": 10, "role3day": "30", "role7day": "70"},
    })
    return provider


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def admin(store, configs, notifier):
    return AdminService(store, configs, notifier)


# ---------------------------------------------------------------------------
# Validation & planning
# ---------------------------------------------------------------------------
class TestParseEditValue:
    def test_integer(self):
        assert parse_edit_value(EditableField.MESSAGES, " 42 ", CONFIG) == 42

    def test_received_daily(self):
        assert parse_edit_value(EditableField.RECEIVED_DAILY, "TRUE", CONFIG) is True
        with pytest.raises(InvalidEditError):
            parse_edit_value(EditableField.RECEIVED_DAILY, "yes", CONFIG)

    @pytest.mark.parametrize("raw", ["abc", "-1", "1.5"])
    def test_rejects_bad_numbers(self, raw):
        with pytest.raises(InvalidEditError):
            parse_edit_value(EditableField.STREAK, raw, CONFIG)

    def test_threshold_capped_by_config(self):
        assert parse_edit_value(EditableField.THRESHOLD, "10", CONFIG) == 10
        with pytest.raises(InvalidEditError):
            parse_edit_value(EditableField.THRESHOLD, "11", CONFIG)


class TestPlanEdit:
    def test_streak_raises_highest_and_grants_roles(self):
        state = UserProgressionState(streak=1, highest_streak=2)
        updates, granted, revoked = plan_edit(state, EditableField.STREAK, 8, CONFIG)
        assert updates == {UserField.STREAK: 8, UserField.HIGHEST_STREAK: 8}
        assert granted == [30, 70]
        assert revoked == []

    def test_streak_lowered_keeps_highest(self):
        state = UserProgressionState(streak=7, highest_streak=9)
        updates, granted, revoked = plan_edit(state, EditableField.STREAK, 2, CONFIG)
        assert updates[UserField.HIGHEST_STREAK] == 9
        assert revoked == [70]
        assert granted == []

    def test_threshold_clears_daily_credit(self):
        updates, _, _ = plan_edit(UserProgressionState(), EditableField.THRESHOLD, 4, CONFIG)
        assert updates == {UserField.THRESHOLD: 4, UserField.RECEIVED_DAILY: False}

    def test_level_clamps_xp(self):
        state = UserProgressionState(experience=Experience(total_xp=5000, level=1))
        updates, granted, _ = plan_edit(state, EditableField.LEVEL, 2, CONFIG)
        assert updates[UserField.LEVEL] == 2
        assert updates[UserField.TOTAL_XP] == 224
        assert granted == [200]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class TestAdminService:
    def test_edit_missing_user_is_noop(self, admin, store):
        result = run_async(admin.edit_user_field(GUILD, 1, EditableField.MESSAGES, "5"))
        assert result.outcome is EditOutcome.NOT_FOUND
        assert store.get_user(GUILD, 1) is None

    def test_edit_streak(self, admin, store, notifier):
        store.put_user(GUILD, 1, UserProgressionState(streak=2, highest_streak=2))
        result = run_async(admin.edit_user_field(GUILD, 1, EditableField.STREAK, "3"))

        assert result.outcome is EditOutcome.UPDATED
        assert (result.old_value, result.new_value) == (2, 3)
        state = store.get_user(GUILD, 1)
        assert (state.streak, state.highest_streak) == (3, 3)
        notifier.grant_role.assert_awaited_once_with(GUILD, 1, 30, "Admin edit of streak")
        assert store.query_metric(GUILD, Metric.STREAK, 1) == [(1, 3.0)]

    def test_invalid_value_raises_before_write(self, admin, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=4))
        with pytest.raises(InvalidEditError):
            run_async(admin.edit_user_field(GUILD, 1, EditableField.MESSAGES, "lots"))
        assert store.get_user(GUILD, 1).messages == 4

    def test_reset_messages_user(self, admin, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=12))
        assert run_async(admin.reset_messages_user(GUILD, 1)) is EditOutcome.UPDATED
        assert store.get_user(GUILD, 1).messages == 0
        assert run_async(admin.reset_messages_user(GUILD, 2)) is EditOutcome.NOT_FOUND

    def test_reset_messages_guild(self, admin, store):
        for uid in (1, 2, 3):
            store.put_user(GUILD, uid, UserProgressionState(messages=uid))
        result = run_async(admin.reset_messages_guild(GUILD))
        assert result == BatchResult(success_count=3, fail_count=0)
        assert all(s.messages == 0 for _, s in store.list_users(GUILD))

    def test_reset_empty_guild(self, admin):
        assert run_async(admin.reset_messages_guild(GUILD)) == BatchResult()


# ---------------------------------------------------------------------------
# Debug snapshot
# ---------------------------------------------------------------------------
class TestDebugSnapshot:
    def test_permission_checklist(self):
        perms = discord.Permissions(send_messages=True, manage_roles=True)
        checklist = dict(permission_checklist(perms))
        assert list(checklist) == list(BOT_PERMISSIONS)
        assert checklist["send_messages"] is True
        assert checklist["manage_roles"] is True
        assert checklist["embed_links"] is False

    def test_checklist_without_permissions(self):
        assert all(not granted for _, granted in permission_checklist(None))

    def test_user_fields(self):
        fields = debug_user_fields(UserProgressionState(
            streak=4, messages=9, experience=Experience(total_xp=12, level=2),
        ))
        assert fields["streak"] == 4
        assert fields["messages"] == 9
        assert fields["experience"] == {"totalXp": 12, "level": 2}
        assert "messageHeatmap" not in fields

    def test_snapshot(self, admin, store, configs):
        store.put_user(GUILD, 5, UserProgressionState(streak=2))
        snapshot = run_async(admin.debug_snapshot(GUILD, 5))
        assert snapshot.config == configs.get_raw(GUILD)
        assert snapshot.user["streak"] == 2

    def test_snapshot_unknown_member_and_guild(self, admin):
        snapshot = run_async(admin.debug_snapshot(999, 5))
        assert snapshot.config is None
        assert snapshot.user is None


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
class TestLeaderboard:
    def test_sorted_and_limited(self, store):
        for uid, xp in [(1, 40), (2, 90), (3, 10), (4, 60)]:
            store.put_user(GUILD, uid, UserProgressionState(experience=Experience(total_xp=xp)))
        rows = query_leaderboard(store, GUILD, "totalXp", limit=3)
        assert rows == [(2, 90.0), (4, 60.0), (1, 40.0)]
        values = [v for _, v in rows]
        assert values == sorted(values, reverse=True)

    def test_unknown_metric_is_empty(self, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=3))
        assert query_leaderboard(store, GUILD, "karma") == []

    def test_clamp_limit(self):
        assert clamp_limit(0) == 0
        assert clamp_limit(-3) == -3
        assert clamp_limit(500) == 50
        assert clamp_limit(10) == 10

    def test_non_positive_limit_is_empty(self, store):
        store.put_user(GUILD, 1, UserProgressionState(messages=3))
        assert query_leaderboard(store, GUILD, "messages", limit=0) == []
        assert query_leaderboard(store, GUILD, "messages", limit=-1) == []
        assert query_leaderboard(store, GUILD, "messages", limit=1) == [(1, 3.0)]


# ---------------------------------------------------------------------------
# Config provider
# ---------------------------------------------------------------------------
class TestGuildConfigProvider:
    def test_unknown_guild(self, db_engine):
        provider = GuildConfigProvider(db_engine)
        assert provider.get_config(123) is None
        assert provider.list_guild_ids() == []

    def test_ensure_config_creates_sections(self, db_engine):
        provider = GuildConfigProvider(db_engine)
        config = provider.ensure_config(123)
        assert not config.streak.enabled
        raw = provider.get_raw(123)
        assert set(raw) == {"streakSystem", "levelSystem", "messageLeaderSystem", "reportSettings"}
        assert provider.list_guild_ids() == [123]

    def test_set_value_refreshes_cache(self, configs):
        assert configs.get_config(GUILD).streak.streak_threshold == 10
        configs.set_value(GUILD, "streakSystem", "streakThreshold", "15")
        assert configs.get_config(GUILD).streak.streak_threshold == 15
        assert configs.get_raw(GUILD)["streakSystem"]["role3day"] == "30"

    def test_set_value_non_finite_number_is_saved_and_ignored(self, configs):
        config = configs.set_value(GUILD, "streakSystem", "streakThreshold", "inf")
        assert config.streak.streak_threshold == 10
        assert configs.get_raw(GUILD)["streakSystem"]["streakThreshold"] == "inf"
        assert configs.get_config(GUILD).streak.streak_threshold == 10

    def test_unreachable_store_is_translated(self, db_engine):
        provider = GuildConfigProvider(db_engine)
        err = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch("stitches.services.record_store.Session.connection", side_effect=err):
            with pytest.raises(StoreUnavailableError):
                provider.get_config(GUILD)
            with pytest.raises(StoreUnavailableError):
                provider.list_guild_ids()
            with pytest.raises(StoreUnavailableError):
                provider.save_config(GUILD, {})

    def test_set_value_unknown_section(self, configs):
        with pytest.raises(ValueError):
            configs.set_value(GUILD, "karmaSystem", "enabled", True)

    def test_coerce_config_value(self):
        assert coerce_config_value("True") is True
        assert coerce_config_value(" false ") is False
        assert coerce_config_value(" 1234 ") == "1234"
