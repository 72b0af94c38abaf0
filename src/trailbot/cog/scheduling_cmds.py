"""
Slash commands that create and cancel delayed actions.

- ``/reminder create|list|cancel``: personal reminders, delivered by DM.
- ``/mute`` and ``/unmute``: Discord member timeouts whose lift is scheduled
  durably, so a restart never leaves a member muted forever.
- ``/countdown``: a live countdown embed edited every tick.

Commands stay thin: they parse options, call ``SchedulingService``, and
turn scheduler errors into ephemeral replies.
"""

from __future__ import annotations

import discord
from discord.ext import commands

from trailbot.configuration.app_configuration import app_config
from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from trailbot.scheduler.errors import (
    InvalidDuration,
    InvalidSchedule,
    NotFound,
    NotOwner,
    QuotaExceeded,
    SchedulerError,
    StoreUnavailable,
)
from trailbot.services.scheduling_service import SchedulingService
from trailbot.ui import scheduled_embeds
from trailbot.util.format_utils import discord_timestamp, format_duration, parse_duration
from trailbot.util.logger import get_logger

logger = get_logger("scheduling_cmds")


def describe_error(exc: SchedulerError) -> str:
    """User-facing text for a scheduling error."""
    if isinstance(exc, QuotaExceeded):
        return (
            f"You've reached the maximum limit of {exc.limit} reminders. "
            f"You currently have {exc.current} active reminders. Please cancel some before creating new ones."
        )
    if isinstance(exc, (InvalidDuration, InvalidSchedule)):
        return str(exc)
    if isinstance(exc, NotFound):
        return f"No active entry with ID {exc.action_id} was found."
    if isinstance(exc, NotOwner):
        return "You can only cancel your own reminders."
    if isinstance(exc, StoreUnavailable):
        return "That failed because of a database error. Please try again later."
    return "Something went wrong while scheduling that."


class SchedulingCommandsCog(commands.Cog):
    """Reminder, timeout and countdown commands backed by the scheduler."""

    reminder = discord.SlashCommandGroup("reminder", "Set, list, and manage reminders")

    def __init__(self, bot: discord.Bot, service: SchedulingService) -> None:
        self.bot = bot
        self.service = service
        logger.info("Scheduling commands cog loaded")

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    @reminder.command(name="create", description="Create a new reminder")
    async def reminder_create(
        self,
        ctx: discord.ApplicationContext,
        time: discord.Option(str, "Time until reminder (e.g., 5m, 1h, 2d)"),  # type: ignore[valid-type]
        message: discord.Option(str, "What to remind you about", max_length=1000),  # type: ignore[valid-type]
    ) -> None:
        try:
            receipt = await self.service.create_reminder(
                owner_id=UserID.from_user(ctx.author),
                guild_id=GuildID(ctx.guild_id) if ctx.guild_id else None,
                channel_id=ChannelID(ctx.channel_id),
                duration_seconds=parse_duration(time),
                message=message,
            )
        except SchedulerError as exc:
            await ctx.respond(describe_error(exc), ephemeral=True)
            return

        await ctx.respond(
            f'I\'ll remind you about "{message}" {discord_timestamp(receipt.due_at)} (ID {receipt.action_id})',
            ephemeral=True,
        )

    @reminder.command(name="list", description="List your active reminders")
    async def reminder_list(self, ctx: discord.ApplicationContext) -> None:
        try:
            reminders = await self.service.list_reminders(UserID.from_user(ctx.author))
        except SchedulerError as exc:
            await ctx.respond(describe_error(exc), ephemeral=True)
            return

        if not reminders:
            await ctx.respond("You have no active reminders.", ephemeral=True)
            return

        lines = [
            f'**ID: {reminder.id}** - "{reminder.payload.message}" ({discord_timestamp(reminder.due_at)})'  # type: ignore[union-attr]
            for reminder in reminders
        ]
        embed = discord.Embed(title="Your Reminders", description="\n".join(lines), color=discord.Color.blurple())
        await ctx.respond(embed=embed, ephemeral=True)

    @reminder.command(name="cancel", description="Cancel a reminder")
    async def reminder_cancel(
        self,
        ctx: discord.ApplicationContext,
        reminder_id: discord.Option(int, "ID of the reminder to cancel", name="id"),  # type: ignore[valid-type]
    ) -> None:
        try:
            await self.service.cancel_reminder(reminder_id, UserID.from_user(ctx.author))
        except SchedulerError as exc:
            await ctx.respond(describe_error(exc), ephemeral=True)
            return
        await ctx.respond(f"Reminder {reminder_id} cancelled.", ephemeral=True)

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    @commands.slash_command(name="mute", description="Time out a member for a set duration.")
    @discord.default_permissions(moderate_members=True)
    @commands.guild_only()
    async def mute(
        self,
        ctx: discord.ApplicationContext,
        user: discord.Option(discord.Member, "Member to time out"),  # type: ignore[valid-type]
        duration: discord.Option(str, "How long (e.g., 10m, 1h, 1d)"),  # type: ignore[valid-type]
        reason: discord.Option(str, "Reason for the timeout", default="No reason provided"),  # type: ignore[valid-type]
    ) -> None:
        await ctx.defer(ephemeral=True)

        if user.id == ctx.author.id:
            await ctx.send_followup("You cannot time out yourself.")
            return

        log_channel_id = app_config.log_channel_id
        try:
            receipt = await self.service.start_timeout(
                guild_id=GuildID(ctx.guild_id),
                user_id=UserID.from_user(user),
                duration_seconds=parse_duration(duration),
                reason=reason,
                log_channel_id=ChannelID(log_channel_id) if log_channel_id else None,
            )
        except SchedulerError as exc:
            await ctx.send_followup(describe_error(exc))
            return

        try:
            await user.timeout(receipt.due_at, reason=f"{reason} (by {ctx.author})")
        except discord.HTTPException as exc:
            logger.warning("[MUTE] Discord refused to time out %s: %s", user.id, exc)
            try:
                await self.service.end_timeout(GuildID(ctx.guild_id), UserID.from_user(user))
            except SchedulerError as rollback_exc:
                logger.warning("[MUTE] Could not cancel scheduled lift for %s: %s", user.id, rollback_exc)
            await ctx.send_followup(f"Could not time out {user.mention}: {exc.text or exc}")
            return

        await ctx.send_followup(
            f"🔇 {user.mention} has been timed out for {format_duration(parse_duration(duration))}. "
            f"Lifts {discord_timestamp(receipt.due_at)}."
        )

    @commands.slash_command(name="unmute", description="Remove a member's timeout early.")
    @discord.default_permissions(moderate_members=True)
    @commands.guild_only()
    async def unmute(
        self,
        ctx: discord.ApplicationContext,
        user: discord.Option(discord.Member, "Member to unmute"),  # type: ignore[valid-type]
        reason: discord.Option(str, "Reason for unmuting", default="Manually unmuted"),  # type: ignore[valid-type]
    ) -> None:
        await ctx.defer(ephemeral=True)

        try:
            await user.remove_timeout(reason=f"{reason} (by {ctx.author})")
        except discord.HTTPException as exc:
            await ctx.send_followup(f"Could not unmute {user.mention}: {exc.text or exc}")
            return

        try:
            had_pending = await self.service.end_timeout(GuildID(ctx.guild_id), UserID.from_user(user))
        except SchedulerError as exc:
            # The member is already unmuted; the stale lift is harmless when it fires.
            logger.warning("[UNMUTE] Could not cancel scheduled lift for %s: %s", user.id, exc)
            had_pending = False

        suffix = "" if had_pending else " (no scheduled timeout was pending)"
        await ctx.send_followup(f"🔊 {user.mention} has been unmuted{suffix}.")

    # ------------------------------------------------------------------
    # Countdowns
    # ------------------------------------------------------------------

    @commands.slash_command(name="countdown", description="Start a live countdown in this channel.")
    @discord.default_permissions(manage_messages=True)
    async def countdown(
        self,
        ctx: discord.ApplicationContext,
        time: discord.Option(str, "Length of the countdown (e.g., 30s, 5m)"),  # type: ignore[valid-type]
        title: discord.Option(str, "Countdown title", default="Countdown", max_length=200),  # type: ignore[valid-type]
        completion_message: discord.Option(str, "Shown when the countdown ends", default="Time's up!"),  # type: ignore[valid-type]
    ) -> None:
        try:
            seconds = parse_duration(time)
            self.service.check_countdown_duration(seconds)
        except SchedulerError as exc:
            await ctx.respond(describe_error(exc), ephemeral=True)
            return

        await ctx.respond(embed=scheduled_embeds.build_countdown_embed(title, seconds, seconds))
        message = await ctx.interaction.original_response()

        try:
            await self.service.start_countdown(
                owner_id=UserID.from_user(ctx.author),
                channel_id=ChannelID(ctx.channel_id),
                message_id=MessageID.from_message(message),
                duration_seconds=seconds,
                title=title,
                completion_message=completion_message,
            )
        except SchedulerError as exc:
            await message.edit(content=describe_error(exc), embed=None)


def setup(bot: discord.Bot, service: SchedulingService) -> None:
    bot.add_cog(SchedulingCommandsCog(bot, service))
