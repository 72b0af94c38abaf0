"""
Trailbot
========

A Discord bot that runs delayed actions: personal reminders, member timeouts
that are lifted on schedule, and live countdown messages. Pending actions
live in SQLite, so they survive restarts and fire (or catch up) afterwards.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. TRAILBOT_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("TRAILBOT_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass

import discord
from dotenv import load_dotenv

from trailbot.bot.discord_notifier import DiscordModerator, DiscordNotifier
from trailbot.configuration.app_configuration import app_config
from trailbot.database.db_connection import ConnectionManager
from trailbot.database.db_schema import SchemaManager
from trailbot.repositories.delayed_action_repo import DelayedActionRepo
from trailbot.scheduler.action_handlers import build_default_handlers
from trailbot.scheduler.delayed_action_scheduler import DelayedActionScheduler
from trailbot.services.scheduling_service import SchedulingService
from trailbot.util.logger import get_logger, handle_exception

logger = get_logger("main")


@dataclass
class Runtime:
    """Everything ``async_main`` builds and ``shutdown_runtime`` tears down."""

    bot: discord.Bot
    connection: ConnectionManager
    scheduler: DelayedActionScheduler
    service: SchedulingService


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild, member and message events; message content is not needed."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.messages = True
    return intents


def create_bot() -> discord.Bot:
    return discord.Bot(intents=build_intents())


def load_cogs(runtime: Runtime) -> None:
    """Register the scheduler lifecycle cog and the command cog."""
    from trailbot.cog import scheduler_cog, scheduling_cmds

    scheduler_cog.setup(runtime.bot, runtime.scheduler)
    scheduling_cmds.setup(runtime.bot, runtime.service)

    logger.info("All cogs loaded successfully.")


async def build_runtime(bot: discord.Bot) -> Runtime:
    """Open the database and wire the scheduler, its handlers and the command service.

    The scheduler is not initialized here; ``SchedulerCog`` does that once the
    gateway is ready, so catch-up deliveries have a connected client.
    """
    database_path = app_config.database_path
    if not database_path.is_absolute():
        database_path = BASE_DIR / database_path

    connection = ConnectionManager()
    await connection.open(database_path)
    try:
        await SchemaManager.initialize_schema(connection.connection)
    except Exception:
        await connection.close()
        raise

    repo = DelayedActionRepo(connection)
    settings = app_config.countdown_settings
    handlers = build_default_handlers(
        DiscordNotifier(bot),
        DiscordModerator(bot),
        tick_seconds=settings.tick_seconds,
    )
    scheduler = DelayedActionScheduler(repo, handlers)
    service = SchedulingService(
        scheduler,
        repo,
        reminder_limits=app_config.reminder_limits,
        countdown_settings=settings,
    )
    return Runtime(bot=bot, connection=connection, scheduler=scheduler, service=service)


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection."""
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(runtime: Runtime) -> None:
    """Stop the scheduler, close the database and disconnect the bot.

    Pending actions stay in the database; the next start re-arms them.
    """
    try:
        await runtime.scheduler.shutdown()
    except Exception as exc:
        logger.exception("Error during scheduler shutdown: %s", exc)

    try:
        await runtime.connection.close()
    except Exception as exc:
        logger.exception("Error while closing the database: %s", exc)

    if not runtime.bot.is_closed():
        try:
            await runtime.bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, scheduler and bot, returning an exit code."""
    token = load_environment()

    try:
        bot = create_bot()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        return 1

    try:
        logger.info("Opening the delayed action store...")
        runtime = await build_runtime(bot)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    load_cogs(runtime)

    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(runtime)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    logger.info("Starting Trailbot…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())
