"""
Kind-specific strategies invoked when a delayed action fires.

Handlers only talk to two collaborators: a ``Notifier`` that delivers rendered
content to Discord, and a ``Moderator`` that lifts member timeouts. Both
report failures as ``TargetNotFound`` (never retried) or ``Unreachable``
(retried on the next catch-up); handlers let those propagate so the
scheduler can decide what happens to the stored row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

from trailbot.datatypes.action_datatypes import (
    ActionKind,
    CountdownPayload,
    DelayedAction,
    ReminderPayload,
    TimeoutPayload,
)
from trailbot.datatypes.discord_datatypes import GuildID, MessageID, Snowflake, UserID
from trailbot.scheduler.errors import DeliveryError, TargetNotFound
from trailbot.ui import scheduled_embeds
from trailbot.util.logger import get_logger

logger = get_logger("action_handlers")


@dataclass(frozen=True, slots=True)
class RenderedContent:
    """Something a notifier can post.

    Attributes:
        text: Plain message content.
        embed: Optional ``discord.Embed``.
        edit_message_id: When set, the notifier edits this message instead of sending a new one.
    """
    text: str | None = None
    embed: Any = None
    edit_message_id: MessageID | None = None


class Notifier(Protocol):
    """Message-sending capability used by every handler."""

    async def deliver(self, scope_id: Snowflake, content: RenderedContent) -> None:
        """Send (or edit) content in a channel.

        Raises:
            TargetNotFound: The channel or edited message no longer exists.
            Unreachable: Discord could not be reached.
        """
        ...

    async def deliver_direct(self, user_id: UserID, content: RenderedContent) -> None:
        """Send content to a user's DMs. Same failure contract as :meth:`deliver`."""
        ...


class Moderator(Protocol):
    """Moderation capability used by the timeout handler."""

    async def lift_timeout(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        """Remove a member's timeout. A member without a timeout is not an error.

        Raises:
            TargetNotFound: The guild or member no longer exists.
            Unreachable: Discord could not be reached.
        """
        ...


class ActionHandler:
    """Base class for handlers; ``kind`` selects which actions it fires."""

    kind: ClassVar[ActionKind]

    async def fire(self, action: DelayedAction) -> None:
        raise NotImplementedError


class ReminderHandler(ActionHandler):
    """Delivers a reminder to its owner by DM, falling back to a channel ping."""

    kind = ActionKind.REMINDER

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    async def fire(self, action: DelayedAction) -> None:
        payload = action.payload
        assert isinstance(payload, ReminderPayload)

        try:
            await self.notifier.deliver_direct(
                action.owner_id,
                RenderedContent(text=scheduled_embeds.reminder_text(payload.message)),
            )
            return
        except TargetNotFound:
            logger.debug("[REMINDER] DM to %s blocked; falling back to channel %s", action.owner_id, action.scope_id)

        # Only the mention goes to the channel; the reminder text stays private.
        await self.notifier.deliver(
            action.scope_id,
            RenderedContent(text=scheduled_embeds.reminder_channel_ping(action.owner_id)),
        )


class TimeoutHandler(ActionHandler):
    """Lifts a member's timeout and posts an optional moderation log notice."""

    kind = ActionKind.TIMEOUT

    def __init__(self, moderator: Moderator, notifier: Notifier) -> None:
        self.moderator = moderator
        self.notifier = notifier

    async def fire(self, action: DelayedAction) -> None:
        payload = action.payload
        assert isinstance(payload, TimeoutPayload)
        guild_id = GuildID(action.scope_id)

        await self.moderator.lift_timeout(guild_id, action.owner_id, "Timeout expired")

        if payload.log_channel_id is None:
            return
        try:
            await self.notifier.deliver(
                payload.log_channel_id,
                RenderedContent(embed=scheduled_embeds.build_unmute_embed(action.owner_id, payload.reason)),
            )
        except DeliveryError as exc:
            # The restriction is already lifted; a lost log line is not worth a retry.
            logger.warning("[TIMEOUT] Could not log unmute of %s in %s: %s", action.owner_id, payload.log_channel_id, exc)


class CountdownHandler(ActionHandler):
    """
    Live countdown display.

    ``tick`` re-renders the display with the remaining time; ``fire`` is the
    terminal finalize effect that swaps in the completion display.
    """

    kind = ActionKind.COUNTDOWN_TICK

    def __init__(self, notifier: Notifier, tick_seconds: float = 1.0) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.notifier = notifier
        self.tick_seconds = tick_seconds

    async def tick(self, action: DelayedAction, remaining_seconds: float) -> None:
        payload = action.payload
        assert isinstance(payload, CountdownPayload)
        embed = scheduled_embeds.build_countdown_embed(payload.title, payload.total_seconds, remaining_seconds)
        await self.notifier.deliver(action.scope_id, RenderedContent(embed=embed, edit_message_id=payload.message_id))

    async def fire(self, action: DelayedAction) -> None:
        payload = action.payload
        assert isinstance(payload, CountdownPayload)
        embed = scheduled_embeds.build_countdown_complete_embed(payload.title, payload.completion_message)
        await self.notifier.deliver(action.scope_id, RenderedContent(embed=embed, edit_message_id=payload.message_id))


def build_default_handlers(
    notifier: Notifier,
    moderator: Moderator,
    *,
    tick_seconds: float = 1.0,
) -> list[ActionHandler]:
    """The three handlers the bot runs with, wired to the same collaborators."""
    return [
        ReminderHandler(notifier),
        TimeoutHandler(moderator, notifier),
        CountdownHandler(notifier, tick_seconds=tick_seconds),
    ]

