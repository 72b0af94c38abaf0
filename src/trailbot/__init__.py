"""Trailbot: community Discord bot with durable reminders, timeouts and countdowns."""

__version__ = "0.1.0"
