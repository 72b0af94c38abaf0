"""
Delayed action types and data structures.

This module defines the ``ActionKind`` and ``ActionState`` enums, the
kind-specific payload dataclasses, and ``DelayedAction``, the record that
the scheduler persists for every pending timer.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Union

from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, Snowflake, UserID
from trailbot.scheduler.errors import InvalidSchedule


class ActionKind(Enum):
    """Enumeration of supported delayed actions."""

    REMINDER = "reminder"
    TIMEOUT = "timeout"
    COUNTDOWN_TICK = "countdown_tick"

    def __str__(self) -> str:
        return self.value


class ActionState(Enum):
    """Lifecycle of a delayed action. Only PENDING actions are ever stored."""

    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ActionState.PENDING


@dataclass(frozen=True, slots=True)
class ReminderPayload:
    """Free-text reminder delivered to its owner.

    Attributes:
        message: What the owner asked to be reminded about.
        guild_id: Guild the reminder was created in, for listing only.
    """
    message: str
    guild_id: GuildID | None = None

    def __post_init__(self) -> None:
        if not self.message or not self.message.strip():
            raise InvalidSchedule("Reminder message must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "guild_id": str(self.guild_id) if self.guild_id is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReminderPayload":
        guild_id = data.get("guild_id")
        return cls(message=data["message"], guild_id=GuildID(guild_id) if guild_id else None)


@dataclass(frozen=True, slots=True)
class TimeoutPayload:
    """Time-limited restriction to lift when the action fires.

    Attributes:
        reason: Why the member was timed out; reused in the audit log reason.
        log_channel_id: Optional moderation log channel notified on lift.
    """
    reason: str = "No reason provided"
    log_channel_id: ChannelID | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "log_channel_id": str(self.log_channel_id) if self.log_channel_id is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeoutPayload":
        log_channel_id = data.get("log_channel_id")
        return cls(
            reason=data.get("reason") or "No reason provided",
            log_channel_id=ChannelID(log_channel_id) if log_channel_id else None,
        )


@dataclass(frozen=True, slots=True)
class CountdownPayload:
    """Display identifiers for a live countdown.

    Progress is never stored; remaining time is always derived from the
    action's ``due_at``.

    Attributes:
        title: Heading shown on the countdown display.
        total_seconds: Full length of the countdown, used for the progress bar.
        completion_message: Text shown once the countdown finishes.
        message_id: Message that is edited on every tick.
    """
    title: str
    total_seconds: int
    completion_message: str
    message_id: MessageID

    def __post_init__(self) -> None:
        if self.total_seconds <= 0:
            raise InvalidSchedule("Countdown length must be positive")
        if not self.title.strip():
            raise InvalidSchedule("Countdown title must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["message_id"] = str(self.message_id)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CountdownPayload":
        return cls(
            title=data["title"],
            total_seconds=int(data["total_seconds"]),
            completion_message=data["completion_message"],
            message_id=MessageID(data["message_id"]),
        )


ActionPayload = Union[ReminderPayload, TimeoutPayload, CountdownPayload]

PAYLOAD_TYPES: Dict[ActionKind, type] = {
    ActionKind.REMINDER: ReminderPayload,
    ActionKind.TIMEOUT: TimeoutPayload,
    ActionKind.COUNTDOWN_TICK: CountdownPayload,
}

# Timeouts fire into a guild; reminders and countdowns into a channel.
SCOPE_TYPES: Dict[ActionKind, type[Snowflake]] = {
    ActionKind.REMINDER: ChannelID,
    ActionKind.TIMEOUT: GuildID,
    ActionKind.COUNTDOWN_TICK: ChannelID,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> float:
    """Unix seconds for an aware datetime."""
    return value.timestamp()


def from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def encode_payload(payload: ActionPayload) -> str:
    return json.dumps(payload.to_dict(), sort_keys=True)


def decode_payload(kind: ActionKind, raw: str) -> ActionPayload:
    """Rebuild the payload dataclass for ``kind`` from its stored JSON text.

    Raises:
        InvalidSchedule: If the JSON is unreadable or misses required fields.
    """
    try:
        data = json.loads(raw)
        return PAYLOAD_TYPES[kind].from_dict(data)
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidSchedule(f"Malformed {kind} payload: {exc}") from exc


@dataclass(frozen=True, slots=True)
class DelayedAction:
    """A persisted record describing one future effect.

    Attributes:
        id: Store-assigned identifier; ``None`` until the row is inserted.
        kind: Selects the handler that fires the action.
        owner_id: User the action is about.
        scope_id: Guild or channel the action fires into (see ``SCOPE_TYPES``).
        payload: Kind-specific data.
        due_at: When the action must fire (aware UTC). Immutable.
        created_at: When the action was requested. Reporting only.
        state: Lifecycle state; the store only ever holds ``PENDING``.
    """
    kind: ActionKind
    owner_id: UserID
    scope_id: Snowflake
    payload: ActionPayload
    due_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None
    state: ActionState = ActionState.PENDING

    def __post_init__(self) -> None:
        if not isinstance(self.payload, PAYLOAD_TYPES[self.kind]):
            raise InvalidSchedule(
                f"{self.kind} actions need a {PAYLOAD_TYPES[self.kind].__name__}, "
                f"got {type(self.payload).__name__}"
            )
        if self.due_at.tzinfo is None or self.created_at.tzinfo is None:
            raise InvalidSchedule("Action timestamps must be timezone-aware")

    def with_id(self, action_id: int) -> "DelayedAction":
        return replace(self, id=action_id)

    def with_state(self, state: ActionState) -> "DelayedAction":
        if self.state.is_terminal:
            raise ValueError(f"Action {self.id} is already {self.state.value}")
        return replace(self, state=state)

    def remaining_seconds(self, now: datetime) -> float:
        return (self.due_at - now).total_seconds()

    def is_due(self, now: datetime) -> bool:
        return self.due_at <= now
