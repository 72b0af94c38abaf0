"""
Durable delayed-action scheduler.

One engine fires reminders, timeout lifts and countdowns. Every action is
written to the durable store before its timer is armed, so a restart can
rebuild the timers with :meth:`DelayedActionScheduler.initialize` (catch-up):
rows already due fire at once, the rest are re-armed for their remaining
delay.

Per-action state machine::

    Pending (armed) --timer--> Firing --handler done--> Fired (row deleted)
          |
          +--cancel--> Cancelled (row deleted)

``Firing`` only exists in memory. Once an action has started firing a
concurrent ``cancel`` reports ``NotFound``. Countdowns add a ticker that
re-renders the display on a fixed cadence; finalize always stops (and waits
for) the ticker before rendering the completion display.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Set

from trailbot.datatypes.action_datatypes import (
    ActionKind,
    ActionPayload,
    ActionState,
    DelayedAction,
    utcnow,
)
from trailbot.datatypes.discord_datatypes import Snowflake, UserID
from trailbot.repositories.delayed_action_repo import DelayedActionStore
from trailbot.scheduler.action_handlers import ActionHandler, CountdownHandler
from trailbot.scheduler.action_registry import ActionRegistry
from trailbot.scheduler.errors import (
    DeliveryError,
    InvalidSchedule,
    NotFound,
    NotOwner,
    StoreUnavailable,
)
from trailbot.util.logger import get_logger

logger = get_logger("delayed_action_scheduler")


class CountdownPhase(Enum):
    TICKING = "ticking"
    COMPLETED = "completed"


@dataclass(slots=True)
class CountdownProgress:
    """Per-countdown sub-state; ``last_reported`` is in whole ticks remaining."""
    phase: CountdownPhase = CountdownPhase.TICKING
    last_reported: int | None = None

    @property
    def completed(self) -> bool:
        return self.phase is CountdownPhase.COMPLETED


class DelayedActionScheduler:
    """
    Arms, cancels, recovers and fires delayed actions.

    Args:
        store: Durable store holding one row per pending action.
        handlers: One handler per supported ``ActionKind``.
        clock: Returns the current aware UTC time.
        registry: In-memory timer index; a fresh one is created if omitted.

    Lifecycle:
        1. ``await initialize()`` once the notifier can deliver (bot ready)
        2. ``schedule`` / ``cancel`` from command handlers
        3. ``await shutdown()`` before the event loop stops
    """

    def __init__(
        self,
        store: DelayedActionStore,
        handlers: Iterable[ActionHandler],
        *,
        clock: Callable[[], datetime] = utcnow,
        registry: ActionRegistry | None = None,
    ) -> None:
        self._store = store
        self._handlers: Dict[ActionKind, ActionHandler] = {}
        for handler in handlers:
            if handler.kind in self._handlers:
                raise ValueError(f"Duplicate handler for {handler.kind}")
            self._handlers[handler.kind] = handler
        self._clock = clock
        self._registry = registry if registry is not None else ActionRegistry()

        self._firing: Set[int] = set()
        # Rows left in the store after a transient failure; retried on next start.
        self._deferred: Set[int] = set()
        self._countdowns: Dict[int, CountdownProgress] = {}
        self._inflight: Set[asyncio.Task] = set()
        # Ids cancelled while catch-up is still loading rows; never armed or fired by it.
        self._cancelled_early: Set[int] = set()
        self._initialized = False

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def schedule(
        self,
        kind: ActionKind,
        owner_id: UserID,
        scope_id: Snowflake,
        payload: ActionPayload,
        due_at: datetime,
    ) -> int:
        """
        Persist a new action and arm its timer.

        Once this returns the action fires exactly once, across restarts,
        unless it is cancelled first.

        Returns:
            int: The store-assigned action id.

        Raises:
            InvalidSchedule: ``due_at`` is not strictly in the future, the kind
                has no handler, or the payload does not fit the kind.
            StoreUnavailable: The row could not be written; nothing was armed.
        """
        if kind not in self._handlers:
            raise InvalidSchedule(f"No handler registered for {kind}")
        if due_at.tzinfo is None:
            raise InvalidSchedule("due_at must be timezone-aware")

        now = self._clock()
        if due_at <= now:
            raise InvalidSchedule(f"due_at {due_at.isoformat()} is not in the future")

        action = DelayedAction(
            kind=kind,
            owner_id=UserID(owner_id),
            scope_id=scope_id,
            payload=payload,
            due_at=due_at,
            created_at=now,
        )
        action = action.with_id(await self._store.insert(action))

        self._arm(action, self._clock())
        logger.info(
            "[SCHEDULER] Scheduled %s #%s for %s in %.1fs",
            kind, action.id, action.owner_id, action.remaining_seconds(now),
        )
        return action.id  # type: ignore[return-value]

    async def cancel(self, action_id: int, owner_id: UserID) -> DelayedAction:
        """
        Cancel a pending action on behalf of its owner.

        Returns:
            DelayedAction: The removed action, in state ``CANCELLED``.

        Raises:
            NotFound: No such pending action, or it has already started firing.
            NotOwner: ``owner_id`` does not own the action.
            StoreUnavailable: The row could not be deleted; the timer stays armed.
        """
        action = await self._store.get(action_id)
        if action is None:
            raise NotFound(action_id)
        if action.owner_id != UserID(owner_id):
            raise NotOwner(action_id)

        # Checked after the await: the timer may have fired while we read.
        if action_id in self._firing:
            raise NotFound(action_id)
        if self._initialized and not self._registry.has(action_id) and action_id not in self._deferred:
            raise NotFound(action_id)

        early = not self._initialized
        if early:
            # Catch-up may already hold this row in memory.
            self._cancelled_early.add(action_id)
        was_armed = self._registry.disarm(action_id)
        self._countdowns.pop(action_id, None)
        try:
            await self._store.delete_by_id(action_id)
        except StoreUnavailable:
            if early:
                self._cancelled_early.discard(action_id)
            if was_armed:
                self._arm(action, self._clock())
            raise

        self._deferred.discard(action_id)
        logger.info("[SCHEDULER] Cancelled %s #%s for %s", action.kind, action_id, action.owner_id)
        return action.with_state(ActionState.CANCELLED)

    async def initialize(self) -> None:
        """
        Catch-up: rebuild timers from the store after a process start.

        Loads every pending row of each handled kind. Overdue rows fire
        immediately (countdowns finalize without ticking); the rest are armed
        for their remaining delay. Safe to call more than once; later calls
        are ignored.
        """
        if self._initialized:
            logger.debug("[SCHEDULER] Already initialized, skipping")
            return

        now = self._clock()
        overdue: list[DelayedAction] = []
        armed = 0

        for kind in self._handlers:
            try:
                pending = await self._store.list_pending(kind)
            except StoreUnavailable as exc:
                logger.error("[SCHEDULER] Could not load pending %s actions: %s", kind, exc)
                continue

            for action in pending:
                if action.id is None or self._registry.has(action.id) or action.id in self._firing:
                    continue
                if action.id in self._cancelled_early:
                    continue
                if action.is_due(now):
                    overdue.append(action)
                else:
                    self._arm(action, now)
                    armed += 1

        # A cancel may have landed while a later kind was loading.
        overdue = [action for action in overdue if action.id not in self._cancelled_early]
        self._cancelled_early.clear()
        self._initialized = True
        logger.info("[SCHEDULER] Restored %d pending actions, %d overdue", armed, len(overdue))

        if overdue:
            await asyncio.gather(*(self._on_fire(action) for action in overdue))

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Disarm every timer and wait briefly for actions that are mid-fire.

        Pending rows stay in the store and are recovered on the next start.
        """
        timers = self._registry.clear()
        self._countdowns.clear()

        tasks = [timer.fire_task for timer in timers]
        tasks += [timer.tick_task for timer in timers if timer.tick_task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        inflight = [task for task in self._inflight if task is not asyncio.current_task()]
        if inflight:
            _, still_running = await asyncio.wait(inflight, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("[SCHEDULER] Cancelled %d actions still firing at shutdown", len(still_running))

        self._initialized = False
        logger.info("[SCHEDULER] Scheduler shutdown complete")

    def stats(self) -> Dict[str, int]:
        return {
            "armed": len(self._registry),
            "firing": len(self._firing),
            "deferred": len(self._deferred),
            "countdowns_ticking": sum(1 for p in self._countdowns.values() if not p.completed),
        }

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm(self, action: DelayedAction, now: datetime) -> None:
        assert action.id is not None
        if action.id in self._firing:
            return

        self._registry.arm(
            action.id,
            action.remaining_seconds(now),
            functools.partial(self._fire_when_due, action),
        )
        if action.kind is ActionKind.COUNTDOWN_TICK:
            self._start_ticker(action, now)

    def _start_ticker(self, action: DelayedAction, now: datetime) -> None:
        handler = self._handlers[action.kind]
        assert isinstance(handler, CountdownHandler)
        assert action.id is not None

        interval = handler.tick_seconds
        remaining = action.remaining_seconds(now)
        units = int(remaining // interval)
        if units < 1:
            # Less than one tick left: finalize only.
            return

        progress = CountdownProgress()
        self._countdowns[action.id] = progress
        # Ticks land on due_at - k * interval, which keeps the phase after a restart.
        first_delay = remaining - units * interval
        self._registry.attach_ticker(
            action.id,
            first_delay,
            functools.partial(self._on_tick, action, progress),
        )

    async def _fire_when_due(self, action: DelayedAction) -> None:
        # Never fire ahead of due_at, even if the loop timer woke early.
        while (early := action.remaining_seconds(self._clock())) > 0:
            await asyncio.sleep(early)
        await self._on_fire(action)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _on_fire(self, action: DelayedAction) -> None:
        action_id = action.id
        assert action_id is not None
        if action_id in self._firing:
            logger.debug("[SCHEDULER] %s #%s is already firing", action.kind, action_id)
            return

        timer = self._registry.release(action_id)
        self._firing.add(action_id)
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)

        try:
            handler = self._handlers[action.kind]
            if timer is not None:
                await timer.stop_ticker()

            progress = self._countdowns.pop(action_id, None)
            if progress is not None:
                progress.phase = CountdownPhase.COMPLETED
                if progress.last_reported != 0:
                    await self._final_tick(handler, action)

            if await self._dispatch(handler, action):
                await self._complete(action.with_state(ActionState.FIRED))
            else:
                self._deferred.add(action_id)
        finally:
            self._firing.discard(action_id)
            if task is not None:
                self._inflight.discard(task)

    async def _dispatch(self, handler: ActionHandler, action: DelayedAction) -> bool:
        """Run the handler; return True when the row should be deleted."""
        try:
            await handler.fire(action)
        except DeliveryError as exc:
            if exc.retryable:
                logger.warning("[SCHEDULER] %s #%s unreachable, left for next start: %s", action.kind, action.id, exc)
                return False
            logger.warning("[SCHEDULER] %s #%s target gone, dropping: %s", action.kind, action.id, exc)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Unclassified failures would fail again on every retry.
            logger.exception("[SCHEDULER] %s #%s handler failed, dropping", action.kind, action.id)
        else:
            logger.info("[SCHEDULER] Fired %s #%s for %s", action.kind, action.id, action.owner_id)
        return True

    async def _complete(self, action: DelayedAction) -> None:
        assert action.id is not None
        try:
            await self._store.delete_by_id(action.id)
        except StoreUnavailable as exc:
            logger.error("[SCHEDULER] Could not delete %s #%s, left for next start: %s", action.kind, action.id, exc)
            self._deferred.add(action.id)
        else:
            self._deferred.discard(action.id)
            logger.debug("[SCHEDULER] %s #%s is %s", action.kind, action.id, action.state.value)

    # ------------------------------------------------------------------
    # Countdown ticks
    # ------------------------------------------------------------------

    async def _final_tick(self, handler: ActionHandler, action: DelayedAction) -> None:
        assert isinstance(handler, CountdownHandler)
        try:
            await handler.tick(action, 0)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[SCHEDULER] Final tick of countdown #%s failed: %s", action.id, exc)

    async def _on_tick(self, action: DelayedAction, progress: CountdownProgress) -> Optional[float]:
        """Render one tick; return the delay until the next one, or None to stop."""
        if progress.completed or action.id in self._firing:
            return None

        handler = self._handlers[action.kind]
        assert isinstance(handler, CountdownHandler)
        interval = handler.tick_seconds

        units = max(0, round(action.remaining_seconds(self._clock()) / interval))
        if units <= 0:
            return None

        if progress.last_reported is None or units < progress.last_reported:
            progress.last_reported = units
            try:
                await handler.tick(action, round(units * interval, 6))
            except DeliveryError as exc:
                if not exc.retryable:
                    logger.info("[SCHEDULER] Countdown #%s display gone, stopping: %s", action.id, exc)
                    await self._abort_countdown(action, progress)
                    return None
                logger.warning("[SCHEDULER] Countdown #%s tick skipped: %s", action.id, exc)

        next_units = progress.last_reported - 1
        if next_units <= 0 or progress.completed:
            return None
        next_at = action.due_at - timedelta(seconds=next_units * interval)
        return (next_at - self._clock()).total_seconds()

    async def _abort_countdown(self, action: DelayedAction, progress: CountdownProgress) -> None:
        """The display message was deleted: stop the countdown and drop its row."""
        assert action.id is not None
        if action.id in self._firing:
            return

        progress.phase = CountdownPhase.COMPLETED
        self._firing.add(action.id)
        try:
            timer = self._registry.release(action.id)
            if timer is not None:
                timer.fire_task.cancel()
            self._countdowns.pop(action.id, None)
            await self._complete(action.with_state(ActionState.CANCELLED))
        finally:
            self._firing.discard(action.id)
