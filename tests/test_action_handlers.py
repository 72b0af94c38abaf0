from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from trailbot.datatypes.action_datatypes import (
    ActionKind,
    CountdownPayload,
    DelayedAction,
    ReminderPayload,
    TimeoutPayload,
    utcnow,
)
from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from trailbot.scheduler.action_handlers import (
    CountdownHandler,
    ReminderHandler,
    RenderedContent,
    TimeoutHandler,
    build_default_handlers,
)
from trailbot.scheduler.errors import TargetNotFound, Unreachable


def _reminder() -> DelayedAction:
    return DelayedAction(
        id=1,
        kind=ActionKind.REMINDER,
        owner_id=UserID(10),
        scope_id=ChannelID(20),
        payload=ReminderPayload(message="call mom"),
        due_at=utcnow() + timedelta(minutes=1),
    )


def _timeout(log_channel: ChannelID | None = ChannelID(30)) -> DelayedAction:
    return DelayedAction(
        id=2,
        kind=ActionKind.TIMEOUT,
        owner_id=UserID(10),
        scope_id=GuildID(40),
        payload=TimeoutPayload(reason="spam", log_channel_id=log_channel),
        due_at=utcnow() + timedelta(minutes=1),
    )


def _countdown() -> DelayedAction:
    return DelayedAction(
        id=3,
        kind=ActionKind.COUNTDOWN_TICK,
        owner_id=UserID(10),
        scope_id=ChannelID(20),
        payload=CountdownPayload(title="Break", total_seconds=60, completion_message="Back to work", message_id=MessageID(55)),
        due_at=utcnow() + timedelta(minutes=1),
    )


@pytest.mark.asyncio
async def test_reminder_is_sent_by_dm() -> None:
    notifier = AsyncMock()
    await ReminderHandler(notifier).fire(_reminder())

    notifier.deliver_direct.assert_awaited_once()
    user_id, content = notifier.deliver_direct.await_args.args
    assert user_id == UserID(10)
    assert content == RenderedContent(text="**Reminder:** call mom")
    notifier.deliver.assert_not_awaited()


@pytest.mark.asyncio
async def test_reminder_falls_back_to_channel_ping_without_leaking_text() -> None:
    notifier = AsyncMock()
    notifier.deliver_direct.side_effect = TargetNotFound("DMs closed")

    await ReminderHandler(notifier).fire(_reminder())

    notifier.deliver.assert_awaited_once()
    scope_id, content = notifier.deliver.await_args.args
    assert scope_id == ChannelID(20)
    assert content.text.startswith("<@10>")
    assert "call mom" not in content.text


@pytest.mark.asyncio
async def test_reminder_unreachable_propagates() -> None:
    notifier = AsyncMock()
    notifier.deliver_direct.side_effect = Unreachable("gateway down")

    with pytest.raises(Unreachable):
        await ReminderHandler(notifier).fire(_reminder())
    notifier.deliver.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_lift_then_log() -> None:
    moderator = AsyncMock()
    notifier = AsyncMock()

    await TimeoutHandler(moderator, notifier).fire(_timeout())

    moderator.lift_timeout.assert_awaited_once_with(GuildID(40), UserID(10), "Timeout expired")
    notifier.deliver.assert_awaited_once()
    channel_id, content = notifier.deliver.await_args.args
    assert channel_id == ChannelID(30)
    assert content.embed.title == "🔊 Timeout Expired"


@pytest.mark.asyncio
async def test_timeout_without_log_channel_only_lifts() -> None:
    moderator = AsyncMock()
    notifier = AsyncMock()

    await TimeoutHandler(moderator, notifier).fire(_timeout(log_channel=None))

    moderator.lift_timeout.assert_awaited_once()
    notifier.deliver.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_log_failure_is_not_an_action_failure() -> None:
    moderator = AsyncMock()
    notifier = AsyncMock()
    notifier.deliver.side_effect = TargetNotFound("log channel deleted")

    await TimeoutHandler(moderator, notifier).fire(_timeout())

    moderator.lift_timeout.assert_awaited_once()


@pytest.mark.asyncio
async def test_timeout_lift_failure_propagates() -> None:
    moderator = AsyncMock()
    moderator.lift_timeout.side_effect = TargetNotFound("member left")
    notifier = AsyncMock()

    with pytest.raises(TargetNotFound):
        await TimeoutHandler(moderator, notifier).fire(_timeout())
    notifier.deliver.assert_not_awaited()


@pytest.mark.asyncio
async def test_countdown_tick_and_finalize_edit_the_same_message() -> None:
    notifier = AsyncMock()
    handler = CountdownHandler(notifier, tick_seconds=1)
    action = _countdown()

    await handler.tick(action, 30)
    await handler.fire(action)

    first, second = notifier.deliver.await_args_list
    assert first.args[1].edit_message_id == MessageID(55)
    assert first.args[1].embed.fields[0].value == "00:30"
    assert second.args[1].edit_message_id == MessageID(55)
    assert second.args[1].embed.description == "Back to work"


def test_countdown_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        CountdownHandler(AsyncMock(), tick_seconds=0)


def test_default_handlers_cover_every_kind() -> None:
    handlers = build_default_handlers(AsyncMock(), AsyncMock(), tick_seconds=2)

    assert {h.kind for h in handlers} == set(ActionKind)
    countdown = next(h for h in handlers if isinstance(h, CountdownHandler))
    assert countdown.tick_seconds == 2
