"""
Request-side rules for creating and cancelling delayed actions.

Command handlers call this service instead of the scheduler directly. It
enforces the limits the scheduler deliberately does not know about
(reminder quota per user, duration bounds, one pending timeout per member)
and then hands a fully validated request to ``DelayedActionScheduler``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, NamedTuple

from trailbot.configuration.app_configuration import CountdownSettings, ReminderLimits
from trailbot.datatypes.action_datatypes import (
    ActionKind,
    CountdownPayload,
    DelayedAction,
    ReminderPayload,
    TimeoutPayload,
    utcnow,
)
from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from trailbot.repositories.delayed_action_repo import DelayedActionStore
from trailbot.scheduler.delayed_action_scheduler import DelayedActionScheduler
from trailbot.scheduler.errors import InvalidDuration, NotFound, QuotaExceeded
from trailbot.util.format_utils import format_duration
from trailbot.util.logger import get_logger

logger = get_logger("scheduling_service")

# Discord rejects member timeouts longer than 28 days.
MAX_TIMEOUT_SECONDS = 28 * 24 * 60 * 60


class ScheduleReceipt(NamedTuple):
    action_id: int
    due_at: datetime


def _check_bounds(seconds: int, minimum: int, maximum: int, what: str) -> None:
    if seconds < minimum:
        raise InvalidDuration(f"{what} must be at least {format_duration(minimum)}.")
    if seconds > maximum:
        raise InvalidDuration(f"{what} cannot be more than {format_duration(maximum)}.")


class SchedulingService:
    """
    Validates user requests and turns them into scheduled actions.

    Args:
        scheduler: Engine that persists and arms the actions.
        store: Same durable store the scheduler uses; read for quotas and listings.
        reminder_limits: Per-user quota and reminder duration bounds.
        countdown_settings: Countdown duration bounds.
        clock: Current aware UTC time.
    """

    def __init__(
        self,
        scheduler: DelayedActionScheduler,
        store: DelayedActionStore,
        *,
        reminder_limits: ReminderLimits | None = None,
        countdown_settings: CountdownSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.scheduler = scheduler
        self.store = store
        self.reminder_limits = reminder_limits or ReminderLimits()
        self.countdown_settings = countdown_settings or CountdownSettings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def create_reminder(
        self,
        owner_id: UserID,
        guild_id: GuildID | None,
        channel_id: ChannelID,
        duration_seconds: int,
        message: str,
    ) -> ScheduleReceipt:
        """
        Schedule a reminder after checking duration bounds and the owner's quota.

        Raises:
            InvalidDuration: Duration outside the configured bounds.
            QuotaExceeded: The owner already has the maximum pending reminders.
                Raised before anything is written.
            InvalidSchedule: Empty message.
            StoreUnavailable: The store could not be read or written.
        """
        limits = self.reminder_limits
        _check_bounds(duration_seconds, limits.min_seconds, limits.max_seconds, "Reminder time")

        current = await self.store.owner_count_pending(owner_id, ActionKind.REMINDER)
        if current >= limits.max_per_user:
            logger.debug("[REMINDERS] %s is at the reminder limit (%d/%d)", owner_id, current, limits.max_per_user)
            raise QuotaExceeded(current, limits.max_per_user)

        due_at = self._clock() + timedelta(seconds=duration_seconds)
        action_id = await self.scheduler.schedule(
            ActionKind.REMINDER,
            owner_id,
            channel_id,
            ReminderPayload(message=message.strip(), guild_id=guild_id),
            due_at,
        )
        return ScheduleReceipt(action_id, due_at)

    async def list_reminders(self, owner_id: UserID) -> List[DelayedAction]:
        return await self.store.list_for_owner(owner_id, ActionKind.REMINDER)

    async def cancel_reminder(self, action_id: int, owner_id: UserID) -> DelayedAction:
        """Cancel one of the owner's reminders; other kinds report ``NotFound``."""
        action = await self.store.get(action_id)
        if action is None or action.kind is not ActionKind.REMINDER:
            raise NotFound(action_id)
        return await self.scheduler.cancel(action_id, owner_id)

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    async def find_timeout(self, guild_id: GuildID, user_id: UserID) -> DelayedAction | None:
        pending = await self.store.list_for_owner(user_id, ActionKind.TIMEOUT)
        return next((action for action in pending if action.scope_id == guild_id), None)

    async def start_timeout(
        self,
        guild_id: GuildID,
        user_id: UserID,
        duration_seconds: int,
        reason: str,
        log_channel_id: ChannelID | None = None,
    ) -> ScheduleReceipt:
        """
        Schedule the lift of a member timeout; replaces a pending one for the same member.

        The caller applies the Discord timeout itself; this only guarantees it
        gets lifted (and logged) even if the bot restarts in between.
        """
        _check_bounds(duration_seconds, 1, MAX_TIMEOUT_SECONDS, "Timeout")

        existing = await self.find_timeout(guild_id, user_id)
        if existing is not None and existing.id is not None:
            try:
                await self.scheduler.cancel(existing.id, user_id)
                logger.info("[TIMEOUTS] Replacing pending timeout #%s for %s", existing.id, user_id)
            except NotFound:
                pass

        due_at = self._clock() + timedelta(seconds=duration_seconds)
        action_id = await self.scheduler.schedule(
            ActionKind.TIMEOUT,
            user_id,
            guild_id,
            TimeoutPayload(reason=reason or "No reason provided", log_channel_id=log_channel_id),
            due_at,
        )
        return ScheduleReceipt(action_id, due_at)

    async def end_timeout(self, guild_id: GuildID, user_id: UserID) -> bool:
        """Cancel the pending lift for a member who is being unmuted by hand.

        Returns:
            bool: False when no pending timeout was found.
        """
        existing = await self.find_timeout(guild_id, user_id)
        if existing is None or existing.id is None:
            return False
        try:
            await self.scheduler.cancel(existing.id, user_id)
        except NotFound:
            return False
        return True

    # ------------------------------------------------------------------
    # Countdowns
    # ------------------------------------------------------------------

    def check_countdown_duration(self, duration_seconds: int) -> None:
        """Raise ``InvalidDuration`` unless a countdown of this length may be started."""
        settings = self.countdown_settings
        _check_bounds(duration_seconds, settings.min_seconds, settings.max_seconds, "Countdown")

    async def start_countdown(
        self,
        owner_id: UserID,
        channel_id: ChannelID,
        message_id: MessageID,
        duration_seconds: int,
        title: str,
        completion_message: str,
    ) -> ScheduleReceipt:
        """Schedule a live countdown that edits ``message_id`` until it completes."""
        self.check_countdown_duration(duration_seconds)

        due_at = self._clock() + timedelta(seconds=duration_seconds)
        action_id = await self.scheduler.schedule(
            ActionKind.COUNTDOWN_TICK,
            owner_id,
            channel_id,
            CountdownPayload(
                title=title,
                total_seconds=duration_seconds,
                completion_message=completion_message,
                message_id=message_id,
            ),
            due_at,
        )
        return ScheduleReceipt(action_id, due_at)
