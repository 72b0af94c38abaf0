from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from trailbot.configuration.app_configuration import CountdownSettings, ReminderLimits
from trailbot.datatypes.action_datatypes import ActionKind, ActionState
from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from trailbot.repositories.delayed_action_repo import DelayedActionRepo
from trailbot.scheduler.action_handlers import build_default_handlers
from trailbot.scheduler.delayed_action_scheduler import DelayedActionScheduler
from trailbot.scheduler.errors import InvalidDuration, NotFound, NotOwner, QuotaExceeded
from trailbot.services.scheduling_service import MAX_TIMEOUT_SECONDS, SchedulingService

OWNER = UserID(1)
GUILD = GuildID(10)
CHANNEL = ChannelID(20)


@pytest_asyncio.fixture
async def service(repo: DelayedActionRepo):
    scheduler = DelayedActionScheduler(repo, build_default_handlers(AsyncMock(), AsyncMock()))
    await scheduler.initialize()
    yield SchedulingService(
        scheduler,
        repo,
        reminder_limits=ReminderLimits(max_per_user=2, min_seconds=60, max_seconds=3600),
        countdown_settings=CountdownSettings(tick_seconds=1, min_seconds=5, max_seconds=600),
    )
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_create_reminder_returns_receipt(service: SchedulingService, repo: DelayedActionRepo) -> None:
    receipt = await service.create_reminder(OWNER, GUILD, CHANNEL, 300, "  stand up  ")

    stored = await repo.get(receipt.action_id)
    assert stored is not None
    assert stored.kind is ActionKind.REMINDER
    assert stored.payload.message == "stand up"  # type: ignore[union-attr]
    assert stored.payload.guild_id == GUILD  # type: ignore[union-attr]
    assert abs((stored.due_at - receipt.due_at).total_seconds()) < 0.001


@pytest.mark.asyncio
async def test_reminder_quota_is_checked_before_any_write(service: SchedulingService, repo: DelayedActionRepo) -> None:
    await service.create_reminder(OWNER, GUILD, CHANNEL, 300, "one")
    await service.create_reminder(OWNER, GUILD, CHANNEL, 300, "two")

    with pytest.raises(QuotaExceeded) as excinfo:
        await service.create_reminder(OWNER, GUILD, CHANNEL, 300, "three")

    assert excinfo.value.current == 2
    assert excinfo.value.limit == 2
    assert await repo.owner_count_pending(OWNER, ActionKind.REMINDER) == 2
    # Other users are unaffected
    await service.create_reminder(UserID(2), GUILD, CHANNEL, 300, "mine")


@pytest.mark.asyncio
async def test_reminder_duration_bounds(service: SchedulingService, repo: DelayedActionRepo) -> None:
    with pytest.raises(InvalidDuration, match="at least 1 min"):
        await service.create_reminder(OWNER, GUILD, CHANNEL, 30, "too soon")
    with pytest.raises(InvalidDuration, match="cannot be more than 1 hour"):
        await service.create_reminder(OWNER, GUILD, CHANNEL, 7200, "too late")

    assert await repo.list_pending() == []


@pytest.mark.asyncio
async def test_list_and_cancel_reminders(service: SchedulingService) -> None:
    first = await service.create_reminder(OWNER, GUILD, CHANNEL, 600, "later")
    second = await service.create_reminder(OWNER, GUILD, CHANNEL, 120, "sooner")

    listed = await service.list_reminders(OWNER)
    assert [a.id for a in listed] == [second.action_id, first.action_id]

    with pytest.raises(NotOwner):
        await service.cancel_reminder(first.action_id, UserID(99))

    cancelled = await service.cancel_reminder(first.action_id, OWNER)
    assert cancelled.state is ActionState.CANCELLED
    assert [a.id for a in await service.list_reminders(OWNER)] == [second.action_id]


@pytest.mark.asyncio
async def test_cancel_reminder_ignores_other_kinds(service: SchedulingService) -> None:
    receipt = await service.start_timeout(GUILD, OWNER, 600, "spam")

    with pytest.raises(NotFound):
        await service.cancel_reminder(receipt.action_id, OWNER)


@pytest.mark.asyncio
async def test_new_timeout_replaces_pending_one(service: SchedulingService, repo: DelayedActionRepo) -> None:
    first = await service.start_timeout(GUILD, OWNER, 600, "spam", log_channel_id=ChannelID(5))
    second = await service.start_timeout(GUILD, OWNER, 1200, "more spam")

    pending = await repo.list_pending(ActionKind.TIMEOUT)
    assert [a.id for a in pending] == [second.action_id]
    assert await repo.get(first.action_id) is None
    assert pending[0].payload.reason == "more spam"  # type: ignore[union-attr]

    found = await service.find_timeout(GUILD, OWNER)
    assert found is not None and found.id == second.action_id


@pytest.mark.asyncio
async def test_timeouts_in_other_guilds_are_independent(service: SchedulingService, repo: DelayedActionRepo) -> None:
    await service.start_timeout(GUILD, OWNER, 600, "spam")
    await service.start_timeout(GuildID(11), OWNER, 600, "spam")

    assert len(await repo.list_pending(ActionKind.TIMEOUT)) == 2


@pytest.mark.asyncio
async def test_end_timeout(service: SchedulingService) -> None:
    await service.start_timeout(GUILD, OWNER, 600, "spam")

    assert await service.end_timeout(GUILD, OWNER) is True
    assert await service.end_timeout(GUILD, OWNER) is False
    assert await service.find_timeout(GUILD, OWNER) is None


@pytest.mark.asyncio
async def test_timeout_bounds(service: SchedulingService) -> None:
    with pytest.raises(InvalidDuration):
        await service.start_timeout(GUILD, OWNER, MAX_TIMEOUT_SECONDS + 1, "too long")


@pytest.mark.asyncio
async def test_start_countdown(service: SchedulingService, repo: DelayedActionRepo) -> None:
    receipt = await service.start_countdown(OWNER, CHANNEL, MessageID(30), 60, "Break", "Back!")

    stored = await repo.get(receipt.action_id)
    assert stored is not None
    assert stored.kind is ActionKind.COUNTDOWN_TICK
    assert stored.payload.total_seconds == 60  # type: ignore[union-attr]
    assert stored.payload.message_id == MessageID(30)  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_countdown_bounds(service: SchedulingService) -> None:
    with pytest.raises(InvalidDuration):
        await service.start_countdown(OWNER, CHANNEL, MessageID(30), 2, "Break", "Back!")
    with pytest.raises(InvalidDuration):
        await service.start_countdown(OWNER, CHANNEL, MessageID(30), 601, "Break", "Back!")


@pytest.mark.asyncio
async def test_check_countdown_duration(service: SchedulingService) -> None:
    service.check_countdown_duration(5)
    service.check_countdown_duration(600)
    with pytest.raises(InvalidDuration):
        service.check_countdown_duration(4)
    with pytest.raises(InvalidDuration):
        service.check_countdown_duration(601)
