"""
tests/test_guild_config.py — Guild config parsing and defaults
===============================================================
"""

from __future__ import annotations

from stitches.constants import DEFAULT_STREAK_THRESHOLD
from stitches.engine.guild_config import (
    GuildConfig,
    ensure_config_structure,
    safe_float,
    safe_int,
    safe_positive_float,
    safe_snowflake,
)


class TestSafeParsing:
    def test_safe_int(self):
        assert safe_int("12", 0) == 12
        assert safe_int("7.9", 0) == 7
        assert safe_int("abc", 5) == 5
        assert safe_int(None, 5) == 5
        assert safe_int(True, 5) == 5

    def test_non_finite_values_fall_back(self):
        assert safe_int("inf", 5) == 5
        assert safe_int(float("-inf"), 5) == 5
        assert safe_int("nan", 5) == 5
        assert safe_int("1e999", 5) == 5
        assert safe_float("Infinity", 1.5) == 1.5
        assert safe_float("2.25", 1.5) == 2.25
        assert safe_snowflake(float("inf")) is None

    def test_safe_positive_float(self):
        assert safe_positive_float("2", 1.5) == 2.0
        assert safe_positive_float(0, 1.5) == 1.5
        assert safe_positive_float("-1", 1.5) == 1.5
        assert safe_positive_float("nan", 1.5) == 1.5

    def test_safe_snowflake(self):
        assert safe_snowflake("123456789012345678") == 123456789012345678
        assert safe_snowflake(42) == 42
        assert safe_snowflake("") is None
        assert safe_snowflake("not-an-id") is None
        assert safe_snowflake(0) is None


class TestGuildConfig:
    def test_missing_document_disables_everything(self):
        config = GuildConfig.from_dict(7, None)
        assert config.guild_id == 7
        assert not config.streak.enabled
        assert not config.level.enabled
        assert not config.leader.enabled
        assert config.streak.streak_threshold == DEFAULT_STREAK_THRESHOLD

    def test_full_document(self):
        config = GuildConfig.from_dict(1, {
            "streakSystem": {
                "enabled": True,
                "streakThreshold": "15",
                "role7day": "700",
                "role30day": 3000,
                "channelStreakOutput": "55",
            },
            "levelSystem": {
                "enabled": True,
                "xpPerMessage": 20,
                "levelMultiplier": "2",
                "roleLevel5": "500",
                "channelLevelUp": "66",
                "levelUpMessages": False,
            },
            "messageLeaderSystem": {
                "enabled": True,
                "channelMessageLeader": "77",
                "roleMessageLeader": "88",
            },
            "reportSettings": {"weeklyReportChannel": "99", "monthlyReportChannel": ""},
        })
        assert config.streak.streak_threshold == 15
        assert config.streak.milestone_roles == {7: 700, 30: 3000}
        assert config.streak.output_channel_id == 55
        assert config.level.xp_per_message == 20
        assert config.level.level_multiplier == 2.0
        assert config.level.level_roles == {5: 500}
        assert config.level.level_up_messages is False
        assert config.leader.role_id == 88
        assert config.reports.weekly_channel_id == 99
        assert config.reports.monthly_channel_id is None

    def test_enabled_must_be_true(self):
        config = GuildConfig.from_dict(1, {"streakSystem": {"enabled": "yes"}})
        assert not config.streak.enabled

    def test_malformed_numbers_fall_back(self):
        config = GuildConfig.from_dict(1, {
            "streakSystem": {"enabled": True, "streakThreshold": "lots"},
            "levelSystem": {"enabled": True, "xpPerMessage": -5, "levelMultiplier": None},
        })
        assert config.streak.streak_threshold == DEFAULT_STREAK_THRESHOLD
        assert config.level.xp_per_message == 0
        assert config.level.level_multiplier == 1.5

    def test_unusable_level_multiplier_falls_back(self):
        for bad in ("nan", "inf", float("inf"), 0, -1, "-0.5"):
            config = GuildConfig.from_dict(1, {"levelSystem": {"levelMultiplier": bad}})
            assert config.level.level_multiplier == 1.5, bad

    def test_overflowing_threshold_falls_back(self):
        config = GuildConfig.from_dict(1, {"streakSystem": {"streakThreshold": "1e999"}})
        assert config.streak.streak_threshold == DEFAULT_STREAK_THRESHOLD

    def test_roles_up_to(self):
        config = GuildConfig.from_dict(1, {
            "streakSystem": {"role3day": "3", "role7day": "7", "role30day": "30"},
        })
        assert config.streak.roles_up_to(10) == [3, 7]
        assert config.streak.roles_up_to(2) == []


class TestEnsureConfigStructure:
    def test_fills_missing_sections(self):
        filled = ensure_config_structure({})
        assert set(filled) == {
            "streakSystem", "levelSystem", "messageLeaderSystem", "reportSettings",
        }
        assert filled["streakSystem"]["enabled"] is False

    def test_existing_keys_preserved(self):
        raw = {"streakSystem": {"enabled": True, "role7day": "1"}}
        filled = ensure_config_structure(raw)
        assert filled["streakSystem"] == {"enabled": True, "role7day": "1"}
        assert raw == {"streakSystem": {"enabled": True, "role7day": "1"}}
        filled["streakSystem"]["enabled"] = False
        assert raw["streakSystem"]["enabled"] is True
