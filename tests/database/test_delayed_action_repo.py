from datetime import timedelta

import pytest

from trailbot.database.db_connection import ConnectionManager
from trailbot.datatypes.action_datatypes import (
    ActionKind,
    CountdownPayload,
    DelayedAction,
    ReminderPayload,
    TimeoutPayload,
    utcnow,
)
from trailbot.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from trailbot.repositories.delayed_action_repo import DelayedActionRepo
from trailbot.scheduler.errors import StoreUnavailable


def _reminder(owner: int = 1, seconds: float = 60, message: str = "stretch") -> DelayedAction:
    return DelayedAction(
        kind=ActionKind.REMINDER,
        owner_id=UserID(owner),
        scope_id=ChannelID(500),
        payload=ReminderPayload(message=message, guild_id=GuildID(900)),
        due_at=utcnow() + timedelta(seconds=seconds),
    )


def _timeout(owner: int = 2, seconds: float = 60) -> DelayedAction:
    return DelayedAction(
        kind=ActionKind.TIMEOUT,
        owner_id=UserID(owner),
        scope_id=GuildID(900),
        payload=TimeoutPayload(reason="spam", log_channel_id=ChannelID(77)),
        due_at=utcnow() + timedelta(seconds=seconds),
    )


@pytest.mark.asyncio
async def test_insert_and_get_restore_every_field(repo: DelayedActionRepo) -> None:
    action = _reminder()
    action_id = await repo.insert(action)

    stored = await repo.get(action_id)

    assert stored is not None
    assert stored.id == action_id
    assert stored.kind is ActionKind.REMINDER
    assert stored.owner_id == UserID(1)
    assert isinstance(stored.scope_id, ChannelID)
    assert stored.payload == action.payload
    assert abs((stored.due_at - action.due_at).total_seconds()) < 0.001
    assert stored.due_at.tzinfo is not None


@pytest.mark.asyncio
async def test_ids_are_unique(repo: DelayedActionRepo) -> None:
    first = await repo.insert(_reminder())
    second = await repo.insert(_reminder())
    assert first != second


@pytest.mark.asyncio
async def test_timeout_scope_is_a_guild(repo: DelayedActionRepo) -> None:
    action_id = await repo.insert(_timeout())

    stored = await repo.get(action_id)

    assert stored is not None
    assert isinstance(stored.scope_id, GuildID)
    assert stored.payload == TimeoutPayload(reason="spam", log_channel_id=ChannelID(77))


@pytest.mark.asyncio
async def test_countdown_payload_survives_storage(repo: DelayedActionRepo) -> None:
    action = DelayedAction(
        kind=ActionKind.COUNTDOWN_TICK,
        owner_id=UserID(3),
        scope_id=ChannelID(500),
        payload=CountdownPayload(title="Launch", total_seconds=30, completion_message="Go!", message_id=MessageID(42)),
        due_at=utcnow() + timedelta(seconds=30),
    )
    action_id = await repo.insert(action)

    stored = await repo.get(action_id)

    assert stored is not None
    assert stored.payload == action.payload


@pytest.mark.asyncio
async def test_get_missing_returns_none(repo: DelayedActionRepo) -> None:
    assert await repo.get(12345) is None


@pytest.mark.asyncio
async def test_delete_removes_row_and_tolerates_missing(repo: DelayedActionRepo) -> None:
    action_id = await repo.insert(_reminder())

    await repo.delete_by_id(action_id)
    await repo.delete_by_id(action_id)

    assert await repo.get(action_id) is None


@pytest.mark.asyncio
async def test_list_pending_orders_by_due_time_and_filters_kind(repo: DelayedActionRepo) -> None:
    late = await repo.insert(_reminder(seconds=300))
    early = await repo.insert(_reminder(seconds=30))
    timeout_id = await repo.insert(_timeout())

    reminders = await repo.list_pending(ActionKind.REMINDER)
    everything = await repo.list_pending()

    assert [a.id for a in reminders] == [early, late]
    assert {a.id for a in everything} == {early, late, timeout_id}


@pytest.mark.asyncio
async def test_list_pending_includes_overdue_rows(repo: DelayedActionRepo) -> None:
    overdue = await repo.insert(_reminder(seconds=-120))

    pending = await repo.list_pending(ActionKind.REMINDER)

    assert [a.id for a in pending] == [overdue]


@pytest.mark.asyncio
async def test_list_pending_skips_unreadable_rows(repo: DelayedActionRepo, connection: ConnectionManager) -> None:
    good = await repo.insert(_reminder())
    async with connection.transaction() as conn:
        await conn.execute(
            "INSERT INTO delayed_actions (kind, owner_id, scope_id, payload, due_at, created_at) "
            "VALUES ('reminder', '1', '500', 'not json', 0, 0)"
        )

    pending = await repo.list_pending(ActionKind.REMINDER)

    assert [a.id for a in pending] == [good]


@pytest.mark.asyncio
async def test_owner_count_and_listing(repo: DelayedActionRepo) -> None:
    await repo.insert(_reminder(owner=1, seconds=120, message="b"))
    await repo.insert(_reminder(owner=1, seconds=60, message="a"))
    await repo.insert(_reminder(owner=2))
    await repo.insert(_timeout(owner=1))

    assert await repo.owner_count_pending(UserID(1), ActionKind.REMINDER) == 2
    assert await repo.owner_count_pending(UserID(1), ActionKind.TIMEOUT) == 1
    assert await repo.owner_count_pending(UserID(3), ActionKind.REMINDER) == 0

    listed = await repo.list_for_owner(UserID(1), ActionKind.REMINDER)
    assert [a.payload.message for a in listed] == ["a", "b"]  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_closed_connection_raises_store_unavailable(repo: DelayedActionRepo, connection: ConnectionManager) -> None:
    await connection.close()

    with pytest.raises(StoreUnavailable):
        await repo.insert(_reminder())
    with pytest.raises(StoreUnavailable):
        await repo.list_pending()
