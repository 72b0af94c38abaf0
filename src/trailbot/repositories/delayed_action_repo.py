"""
Persistent storage for pending delayed actions.

Every pending reminder, timeout and countdown is one row in
``delayed_actions``. Rows are deleted as soon as the action fires or is
cancelled, so the table only ever holds pending work and doubles as the
restart-recovery log.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Protocol

import aiosqlite

from trailbot.database.db_connection import ConnectionManager
from trailbot.datatypes.action_datatypes import (
    SCOPE_TYPES,
    ActionKind,
    DelayedAction,
    decode_payload,
    encode_payload,
    from_timestamp,
    to_timestamp,
)
from trailbot.datatypes.discord_datatypes import UserID
from trailbot.scheduler.errors import InvalidSchedule, StoreUnavailable
from trailbot.util.logger import get_logger

logger = get_logger("delayed_action_repo")

_COLUMNS = "id, kind, owner_id, scope_id, payload, due_at, created_at"


class DelayedActionStore(Protocol):
    """Durable store contract the scheduler depends on."""

    async def insert(self, action: DelayedAction) -> int: ...

    async def delete_by_id(self, action_id: int) -> None: ...

    async def get(self, action_id: int) -> Optional[DelayedAction]: ...

    async def list_pending(self, kind: ActionKind | None = None) -> List[DelayedAction]: ...

    async def owner_count_pending(self, owner_id: UserID, kind: ActionKind) -> int: ...

    async def list_for_owner(self, owner_id: UserID, kind: ActionKind) -> List[DelayedAction]: ...


@asynccontextmanager
async def _store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise driver and connection failures as ``StoreUnavailable``."""
    try:
        yield
    except (aiosqlite.Error, RuntimeError, ValueError) as exc:
        logger.error("[DELAYED ACTIONS] %s failed: %s", operation, exc)
        raise StoreUnavailable(f"{operation} failed: {exc}") from exc


def _row_to_action(row: aiosqlite.Row) -> DelayedAction:
    kind = ActionKind(row["kind"])
    return DelayedAction(
        id=int(row["id"]),
        kind=kind,
        owner_id=UserID(row["owner_id"]),
        scope_id=SCOPE_TYPES[kind](row["scope_id"]),
        payload=decode_payload(kind, row["payload"]),
        due_at=from_timestamp(row["due_at"]),
        created_at=from_timestamp(row["created_at"]),
    )


class DelayedActionRepo:
    """CRUD for the ``delayed_actions`` table over a shared connection."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, action: DelayedAction) -> int:
        """Persist a new pending action and return its assigned id.

        Raises:
            StoreUnavailable: If the database cannot be written.
        """
        async with _store_errors("insert"):
            async with self._connection.transaction() as conn:
                cursor = await conn.execute(
                    "INSERT INTO delayed_actions (kind, owner_id, scope_id, payload, due_at, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        action.kind.value,
                        str(action.owner_id),
                        str(action.scope_id),
                        encode_payload(action.payload),
                        to_timestamp(action.due_at),
                        to_timestamp(action.created_at),
                    ),
                )
                action_id = cursor.lastrowid
        if action_id is None:
            raise StoreUnavailable("insert returned no row id")
        return int(action_id)

    async def delete_by_id(self, action_id: int) -> None:
        """Remove a row. Deleting an id that does not exist is not an error."""
        async with _store_errors("delete"):
            async with self._connection.transaction() as conn:
                await conn.execute("DELETE FROM delayed_actions WHERE id = ?", (action_id,))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, action_id: int) -> Optional[DelayedAction]:
        async with _store_errors("get"):
            async with self._connection.read() as conn:
                cursor = await conn.execute(
                    f"SELECT {_COLUMNS} FROM delayed_actions WHERE id = ?", (action_id,)
                )
                row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_action(row)

    async def list_pending(self, kind: ActionKind | None = None) -> List[DelayedAction]:
        """Return every stored action (of ``kind``, if given) ordered by due time.

        Always queries the database. Rows whose payload cannot be decoded are
        logged and skipped so one bad row does not block recovery of the rest.
        """
        async with _store_errors("list_pending"):
            async with self._connection.read() as conn:
                if kind is None:
                    cursor = await conn.execute(
                        f"SELECT {_COLUMNS} FROM delayed_actions ORDER BY due_at, id"
                    )
                else:
                    cursor = await conn.execute(
                        f"SELECT {_COLUMNS} FROM delayed_actions WHERE kind = ? ORDER BY due_at, id",
                        (kind.value,),
                    )
                rows = await cursor.fetchall()

        actions: List[DelayedAction] = []
        for row in rows:
            try:
                actions.append(_row_to_action(row))
            except (InvalidSchedule, ValueError) as exc:
                logger.error("[DELAYED ACTIONS] Skipping unreadable row %s: %s", row["id"], exc)
        return actions

    async def owner_count_pending(self, owner_id: UserID, kind: ActionKind) -> int:
        async with _store_errors("owner_count_pending"):
            async with self._connection.read() as conn:
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM delayed_actions WHERE owner_id = ? AND kind = ?",
                    (str(owner_id), kind.value),
                )
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_for_owner(self, owner_id: UserID, kind: ActionKind) -> List[DelayedAction]:
        """Pending actions of one kind for one owner, soonest first."""
        async with _store_errors("list_for_owner"):
            async with self._connection.read() as conn:
                cursor = await conn.execute(
                    f"SELECT {_COLUMNS} FROM delayed_actions WHERE owner_id = ? AND kind = ? ORDER BY due_at, id",
                    (str(owner_id), kind.value),
                )
                rows = await cursor.fetchall()
        return [_row_to_action(row) for row in rows]
