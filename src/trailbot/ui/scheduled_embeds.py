"""
Display rendering for scheduled actions.

Builds the reminder texts, the "timeout lifted" log embed, and the live
countdown embeds that the countdown handler edits in place.
"""

import datetime

import discord

from trailbot.datatypes.discord_datatypes import UserID
from trailbot.util.format_utils import format_clock

PROGRESS_BAR_LENGTH = 20
FILLED_CELL = "█"
EMPTY_CELL = "░"

# (fraction of total still remaining, colour); first match wins
COUNTDOWN_COLORS = [
    (0.67, discord.Color.green()),
    (0.33, discord.Color.yellow()),
    (0.15, discord.Color.orange()),
]
FINAL_COLOR = discord.Color.red()


def reminder_text(message: str) -> str:
    return f"**Reminder:** {message}"


def reminder_channel_ping(user_id: UserID) -> str:
    """Channel fallback when a DM is blocked; never repeats the reminder text."""
    return f"<@{user_id}> **Reminder!** Check your DMs or use `/reminder list` to see your reminders."


def build_unmute_embed(user_id: UserID, reason: str) -> discord.Embed:
    embed = discord.Embed(
        title="🔊 Timeout Expired",
        description=f"<@{user_id}> (`{user_id}`) can speak again.",
        color=discord.Color.green(),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="Original reason", value=reason or "No reason provided", inline=False)
    embed.set_footer(text="Moderator: System")
    return embed


def progress_fraction(total_seconds: int, remaining_seconds: float) -> float:
    """Share of the countdown already elapsed, clamped to [0, 1]."""
    if total_seconds <= 0:
        return 1.0
    elapsed = (total_seconds - remaining_seconds) / total_seconds
    return min(max(elapsed, 0.0), 1.0)


def progress_bar(fraction: float, length: int = PROGRESS_BAR_LENGTH) -> str:
    filled = int(fraction * length)
    return FILLED_CELL * filled + EMPTY_CELL * (length - filled)


def countdown_color(total_seconds: int, remaining_seconds: float) -> discord.Color:
    for threshold, color in COUNTDOWN_COLORS:
        if remaining_seconds > total_seconds * threshold:
            return color
    return FINAL_COLOR


def build_countdown_embed(title: str, total_seconds: int, remaining_seconds: float) -> discord.Embed:
    """Live display for a running countdown."""
    fraction = progress_fraction(total_seconds, remaining_seconds)
    emoji = "⏰" if remaining_seconds <= 5 else "⏳"

    embed = discord.Embed(
        title=f"{emoji} {title}",
        description=progress_bar(fraction),
        color=countdown_color(total_seconds, remaining_seconds),
    )
    embed.add_field(name="Time Remaining", value=format_clock(remaining_seconds), inline=True)
    embed.add_field(name="Progress", value=f"{round(fraction * 100)}%", inline=True)
    embed.set_footer(text=f"Counting down from {total_seconds} seconds")
    return embed


def build_countdown_complete_embed(title: str, completion_message: str) -> discord.Embed:
    return discord.Embed(
        title=f"🎉 {title} 🎉",
        description=completion_message,
        color=discord.Color.green(),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
