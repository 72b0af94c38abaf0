"""
Type-safe wrapper classes for Discord identifiers.

Discord snowflakes are 64-bit integers but are stored as TEXT in the
database and as strings in JSON payloads. These wrappers keep the two
representations interchangeable and stop a channel id from being passed
where a user id is expected.
"""

from __future__ import annotations

from typing import TypeVar, Union

import discord

S = TypeVar("S", bound="Snowflake")


class Snowflake:
    """
    Base wrapper for a Discord snowflake ID.

    The value is kept as a normalised decimal string. Instances compare equal
    to the same id given as ``int`` or ``str``, but never to a snowflake of a
    different subclass.

    Example:
        >>> uid = UserID(123456789012345678)
        >>> uid.to_int()
        123456789012345678
        >>> str(uid)
        '123456789012345678'
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "Snowflake"]) -> None:
        """
        Args:
            value: The snowflake as a string, int, or another wrapper.

        Raises:
            ValueError: If the value cannot be converted to a valid snowflake.
        """
        if isinstance(value, Snowflake):
            self._value = value._value
        elif isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool")
        elif isinstance(value, int):
            if value < 0:
                raise ValueError(f"Snowflake must be non-negative, got {value}")
            self._value = str(value)
        elif isinstance(value, str):
            self._value = str(int(value.strip()))
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")

    @classmethod
    def from_int(cls: type[S], value: int) -> S:
        return cls(value)

    def to_int(self) -> int:
        """Convert to an integer for Discord API calls."""
        return int(self._value)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snowflake):
            return type(self) is type(other) and self._value == other._value
        if isinstance(other, str):
            return self._value == other
        if isinstance(other, int) and not isinstance(other, bool):
            return self._value == str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)


class UserID(Snowflake):
    """Discord user snowflake."""

    __slots__ = ()

    @classmethod
    def from_user(cls, member: Union[discord.Member, discord.User]) -> "UserID":
        return cls(member.id)


class GuildID(Snowflake):
    """Discord guild snowflake."""

    __slots__ = ()

    @classmethod
    def from_guild(cls, guild: discord.Guild) -> "GuildID":
        return cls(guild.id)


class ChannelID(Snowflake):
    """Discord channel (or thread) snowflake."""

    __slots__ = ()

    @classmethod
    def from_channel(cls, channel: Union[discord.abc.GuildChannel, discord.Thread, discord.abc.Messageable]) -> "ChannelID":
        return cls(channel.id)  # type: ignore[attr-defined]


class MessageID(Snowflake):
    """Discord message snowflake."""

    __slots__ = ()

    @classmethod
    def from_message(cls, message: discord.Message) -> "MessageID":
        return cls(message.id)
