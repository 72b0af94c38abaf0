"""Lifecycle cog for the delayed-action scheduler.

Runs catch-up once the bot is connected (handlers need a working gateway
to deliver) and exposes a small stats command for operators.
"""

from __future__ import annotations

import discord
from discord.ext import commands

from trailbot.scheduler.delayed_action_scheduler import DelayedActionScheduler
from trailbot.util.logger import get_logger

logger = get_logger("scheduler_cog")


class SchedulerCog(commands.Cog):
    """
    Starts the scheduler on the first ``on_ready``.

    ``on_ready`` fires again after every gateway reconnect; the scheduler
    ignores repeated ``initialize`` calls, so timers are never armed twice.
    """

    def __init__(self, bot: discord.Bot, scheduler: DelayedActionScheduler) -> None:
        self.bot = bot
        self.scheduler = scheduler

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        if self.scheduler.initialized:
            return
        try:
            await self.scheduler.initialize()
        except Exception:
            logger.exception("[SCHEDULER_COG] Catch-up failed")
            return
        logger.info("[SCHEDULER_COG] Ready (%s)", self.scheduler.stats())

    @commands.slash_command(name="scheduler-stats", description="Show how many delayed actions are armed.")
    @discord.default_permissions(manage_guild=True)
    async def scheduler_stats(self, ctx: discord.ApplicationContext) -> None:
        stats = self.scheduler.stats()
        embed = discord.Embed(title="⏱️ Scheduler", color=discord.Color.blurple())
        for name, value in stats.items():
            embed.add_field(name=name.replace("_", " ").title(), value=str(value), inline=True)
        await ctx.respond(embed=embed, ephemeral=True)


def setup(bot: discord.Bot, scheduler: DelayedActionScheduler) -> None:
    bot.add_cog(SchedulerCog(bot, scheduler))
