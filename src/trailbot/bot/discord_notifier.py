"""
py-cord implementations of the scheduler's delivery collaborators.

``DiscordNotifier`` sends and edits messages; ``DiscordModerator`` lifts
member timeouts. Both translate Discord failures into the scheduler's
delivery taxonomy:

* missing channel/message/member, or missing permission -> ``TargetNotFound``
* 5xx, rate limits, network errors and timeouts         -> ``Unreachable``
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiohttp
import discord

from trailbot.datatypes.discord_datatypes import GuildID, Snowflake, UserID
from trailbot.scheduler.action_handlers import RenderedContent
from trailbot.scheduler.errors import TargetNotFound, Unreachable
from trailbot.util.logger import get_logger

logger = get_logger("discord_notifier")

TOO_MANY_REQUESTS = 429


def classify_discord_error(exc: BaseException, target: str) -> TargetNotFound | Unreachable | None:
    """Map a Discord/network exception to a delivery error, or None if it is not one."""
    if isinstance(exc, (discord.NotFound, discord.Forbidden)):
        return TargetNotFound(f"{target}: {exc}")
    if isinstance(exc, discord.DiscordServerError):
        return Unreachable(f"{target}: {exc}")
    if isinstance(exc, discord.HTTPException):
        if exc.status == TOO_MANY_REQUESTS:
            return Unreachable(f"{target}: rate limited")
        # Any other 4xx is a request Discord will keep rejecting.
        return TargetNotFound(f"{target}: {exc}")
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return Unreachable(f"{target}: {exc}")
    return None


@asynccontextmanager
async def classified(target: str) -> AsyncIterator[None]:
    """Re-raise Discord and network failures inside the block as delivery errors."""
    try:
        yield
    except (TargetNotFound, Unreachable):
        raise
    except Exception as exc:
        error = classify_discord_error(exc, target)
        if error is None:
            raise
        raise error from exc


class DiscordNotifier:
    """Delivers rendered content through a connected ``discord.Bot``."""

    def __init__(self, bot: discord.Bot) -> None:
        self.bot = bot

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise TargetNotFound(f"channel {channel_id} is not messageable")
        return channel

    async def deliver(self, scope_id: Snowflake, content: RenderedContent) -> None:
        target = f"channel {scope_id}"
        async with classified(target):
            channel = await self._resolve_channel(scope_id.to_int())

            if content.edit_message_id is not None:
                get_partial = getattr(channel, "get_partial_message", None)
                if get_partial is None:
                    raise TargetNotFound(f"{target} does not support message edits")
                message = get_partial(content.edit_message_id.to_int())
                await message.edit(content=content.text, embed=content.embed)
                return

            await channel.send(content=content.text, embed=content.embed)

    async def deliver_direct(self, user_id: UserID, content: RenderedContent) -> None:
        async with classified(f"user {user_id}"):
            user = self.bot.get_user(user_id.to_int())
            if user is None:
                user = await self.bot.fetch_user(user_id.to_int())
            await user.send(content=content.text, embed=content.embed)


class DiscordModerator:
    """Lifts member timeouts through a connected ``discord.Bot``."""

    def __init__(self, bot: discord.Bot) -> None:
        self.bot = bot

    async def lift_timeout(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        async with classified(f"member {user_id} in guild {guild_id}"):
            guild = self.bot.get_guild(guild_id.to_int())
            if guild is None:
                guild = await self.bot.fetch_guild(guild_id.to_int())

            member = guild.get_member(user_id.to_int())
            if member is None:
                member = await guild.fetch_member(user_id.to_int())

            if not member.timed_out:
                logger.debug("[MODERATOR] %s in %s is no longer timed out", user_id, guild_id)
                return
            await member.remove_timeout(reason=reason)
            logger.info("[MODERATOR] Lifted timeout for %s in %s", user_id, guild_id)
