"""
stitches.services.admin_service — Moderator edits and manual resets
====================================================================

Backs the ``/edit-user-data``, ``/reset-messages`` and ``/debug`` commands.

Edits are typed: the raw string from the command is parsed and validated
against the field before anything is written.  Editing a user with no
record is a no-op reported as :attr:`EditOutcome.NOT_FOUND`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from stitches.constants import xp_for_level
from stitches.database.engine import run_db
from stitches.engine.guild_config import GuildConfig
from stitches.engine.state import Metric, UserProgressionState
from stitches.services.ingestion_service import notify_safely
from stitches.services.record_store import BatchResult, RecordStore, UserField
from stitches.services.rollover_service import collect_users

if TYPE_CHECKING:
    from stitches.services.config_service import GuildConfigProvider
    from stitches.services.notifier import Notifier

logger = logging.getLogger(__name__)


class EditableField(enum.StrEnum):
    MESSAGES = "messages"
    STREAK = "streak"
    THRESHOLD = "threshold"
    RECEIVED_DAILY = "receivedDaily"
    TOTAL_XP = "totalXp"
    LEVEL = "level"
    ACTIVE_DAYS_COUNT = "activeDaysCount"
    LONGEST_INACTIVE_PERIOD = "longestInactivePeriod"


class EditOutcome(enum.Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"


class InvalidEditError(ValueError):
    """The supplied value is not acceptable for the field."""


@dataclass
class EditResult:
    outcome: EditOutcome
    field: EditableField
    old_value: Any = None
    new_value: Any = None
    roles_granted: list[int] = field(default_factory=list)
    roles_revoked: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing & planning (pure)
# ---------------------------------------------------------------------------
def parse_edit_value(edit: EditableField, raw: str, config: GuildConfig) -> int | bool:
    """Validate *raw* for *edit*.  Raises :class:`InvalidEditError`."""
    text = raw.strip()
    if edit is EditableField.RECEIVED_DAILY:
        lowered = text.lower()
        if lowered not in ("true", "false"):
            raise InvalidEditError('Enter either "true" or "false" for receivedDaily.')
        return lowered == "true"

    try:
        value = int(text)
    except ValueError:
        raise InvalidEditError(f"{edit.value} must be a whole number.") from None
    if value < 0:
        raise InvalidEditError(f"{edit.value} cannot be negative.")
    if edit is EditableField.THRESHOLD and value > config.streak.streak_threshold:
        raise InvalidEditError(
            "Threshold cannot exceed the configured streak threshold "
            f"({config.streak.streak_threshold})."
        )
    return value


def _old_value(state: UserProgressionState, edit: EditableField) -> Any:
    match edit:
        case EditableField.MESSAGES:
            return state.messages
        case EditableField.STREAK:
            return state.streak
        case EditableField.THRESHOLD:
            return state.threshold
        case EditableField.RECEIVED_DAILY:
            return state.received_daily
        case EditableField.TOTAL_XP:
            return state.experience.total_xp
        case EditableField.LEVEL:
            return state.experience.level
        case EditableField.ACTIVE_DAYS_COUNT:
            return state.active_days_count
        case EditableField.LONGEST_INACTIVE_PERIOD:
            return state.longest_inactive_period


def _role_changes(
    bindings: dict[int, int], old: int, new: int
) -> tuple[list[int], list[int]]:
    """Drop the role bound to *old*; add every role bound to (old, new]."""
    revoked = [bindings[old]] if old > 0 and old in bindings and old != new else []
    granted = [bindings[n] for n in range(old + 1, new + 1) if n in bindings]
    return granted, revoked


def plan_edit(
    state: UserProgressionState,
    edit: EditableField,
    value: int | bool,
    config: GuildConfig,
) -> tuple[dict[UserField, Any], list[int], list[int]]:
    """Return ``(field updates, roles to grant, roles to revoke)``."""
    granted: list[int] = []
    revoked: list[int] = []
    match edit:
        case EditableField.MESSAGES:
            updates = {UserField.MESSAGES: value}
        case EditableField.STREAK:
            updates = {
                UserField.STREAK: value,
                UserField.HIGHEST_STREAK: max(state.highest_streak, value),
            }
            granted, revoked = _role_changes(config.streak.milestone_roles, state.streak, value)
        case EditableField.THRESHOLD:
            updates = {UserField.THRESHOLD: value, UserField.RECEIVED_DAILY: False}
        case EditableField.RECEIVED_DAILY:
            updates = {UserField.RECEIVED_DAILY: value}
        case EditableField.TOTAL_XP:
            updates = {UserField.TOTAL_XP: value}
        case EditableField.LEVEL:
            required = xp_for_level(value, config.level.level_multiplier, config.level.base_xp)
            updates = {
                UserField.LEVEL: value,
                UserField.TOTAL_XP: max(min(state.experience.total_xp, required - 1), 0),
            }
            granted, revoked = _role_changes(
                config.level.level_roles, state.experience.level, value
            )
        case EditableField.ACTIVE_DAYS_COUNT:
            updates = {UserField.ACTIVE_DAYS_COUNT: value}
        case EditableField.LONGEST_INACTIVE_PERIOD:
            updates = {UserField.LONGEST_INACTIVE_PERIOD: value}
    return updates, granted, revoked


# ---------------------------------------------------------------------------
# Debug snapshot
# ---------------------------------------------------------------------------
BOT_PERMISSIONS = (
    "view_channel",
    "send_messages",
    "embed_links",
    "attach_files",
    "read_message_history",
    "manage_roles",
    "manage_channels",
)


def permission_checklist(permissions: Any) -> list[tuple[str, bool]]:
    """``(name, granted)`` for every permission the bot relies on.

    *permissions* is anything with boolean attributes by permission name,
    e.g. :class:`discord.Permissions`.
    """
    return [(name, getattr(permissions, name, False) is True) for name in BOT_PERMISSIONS]


def debug_user_fields(state: UserProgressionState) -> dict[str, Any]:
    """The part of a record worth reading when diagnosing a member."""
    return {
        "streak": state.streak,
        "highestStreak": state.highest_streak,
        "messages": state.messages,
        "threshold": state.threshold,
        "receivedDaily": state.received_daily,
        "messageLeaderWins": state.message_leader_wins,
        "daysTracked": state.days_tracked,
        "averageMessagesPerDay": state.average_messages_per_day,
        "activeDaysCount": state.active_days_count,
        "lastStreakLoss": state.last_streak_loss,
        "lastDailyRollover": state.last_daily_rollover,
        "experience": {"totalXp": state.experience.total_xp, "level": state.experience.level},
        "boosters": state.boosters,
    }


@dataclass
class DebugSnapshot:
    config: dict[str, Any] | None
    user: dict[str, Any] | None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class AdminService:
    def __init__(
        self, store: RecordStore, configs: GuildConfigProvider, notifier: Notifier
    ) -> None:
        self.store = store
        self.configs = configs
        self.notifier = notifier

    async def edit_user_field(
        self, guild_id: int, user_id: int, edit: EditableField, raw_value: str
    ) -> EditResult:
        config = await run_db(self.configs.get_config, guild_id) or GuildConfig(guild_id=guild_id)
        value = parse_edit_value(edit, raw_value, config)

        state = await run_db(self.store.get_user, guild_id, user_id)
        if state is None:
            return EditResult(EditOutcome.NOT_FOUND, edit, new_value=value)

        old = _old_value(state, edit)
        updates, granted, revoked = plan_edit(state, edit, value, config)
        if not await run_db(self.store.update_user_fields, guild_id, user_id, updates):
            return EditResult(EditOutcome.NOT_FOUND, edit, new_value=value)
        logger.info(
            "Edited %s for user %s in guild %s: %r → %r",
            edit.value, user_id, guild_id, old, value,
        )

        if revoked:
            await notify_safely(
                self.notifier.revoke_roles(guild_id, user_id, revoked, f"Admin edit of {edit.value}"),
                "revoke_roles",
            )
        for role_id in granted:
            await notify_safely(
                self.notifier.grant_role(guild_id, user_id, role_id, f"Admin edit of {edit.value}"),
                "grant_role",
            )
        return EditResult(EditOutcome.UPDATED, edit, old, value, granted, revoked)

    async def reset_messages_user(self, guild_id: int, user_id: int) -> EditOutcome:
        updated = await run_db(
            self.store.update_user_fields, guild_id, user_id, {UserField.MESSAGES: 0}
        )
        return EditOutcome.UPDATED if updated else EditOutcome.NOT_FOUND

    async def reset_messages_guild(self, guild_id: int) -> BatchResult:
        users = await collect_users(self.store, guild_id)
        user_ids = [uid for uid, _ in users]
        if not user_ids:
            return BatchResult()
        result = await run_db(
            self.store.batch_reset_metric, guild_id, user_ids, Metric.MESSAGES, 0
        )
        logger.info(
            "Manual message reset in guild %s: %d ok, %d failed",
            guild_id, result.success_count, result.fail_count,
        )
        return result

    async def debug_snapshot(self, guild_id: int, user_id: int) -> DebugSnapshot:
        raw = await run_db(self.configs.get_raw, guild_id)
        state = await run_db(self.store.get_user, guild_id, user_id)
        return DebugSnapshot(
            config=raw,
            user=debug_user_fields(state) if state is not None else None,
        )
