"""
In-memory index of live timers, keyed by delayed action id.

Each armed action owns one asyncio task that sleeps until the action is due
and then awaits its fire callback. Countdowns additionally own a ticker
task stored on the same entry, so disarming an id always stops both.

The registry is rebuilt from the durable store on every start and is never
persisted itself.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from trailbot.util.logger import get_logger

logger = get_logger("action_registry")

FireCallback = Callable[[], Awaitable[None]]
# Returns the delay until the next tick, or None to stop ticking.
TickCallback = Callable[[], Awaitable[Optional[float]]]


@dataclass(slots=True)
class ArmedTimer:
    """Handles for one armed action.

    Attributes:
        action_id: Id of the delayed action this timer belongs to.
        fire_task: One-shot task that fires the action at its due time.
        tick_task: Recurring countdown ticker, if one is attached.
    """
    action_id: int
    fire_task: asyncio.Task[None]
    tick_task: asyncio.Task[None] | None = None

    def cancel(self) -> None:
        self.fire_task.cancel()
        if self.tick_task is not None:
            self.tick_task.cancel()

    async def stop_ticker(self) -> None:
        """Cancel the ticker and wait until it has fully stopped."""
        task, self.tick_task = self.tick_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


async def _fire_after(action_id: int, delay: float, on_fire: FireCallback) -> None:
    await asyncio.sleep(max(delay, 0.0))
    try:
        await on_fire()
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("[REGISTRY] Fire callback for action %s raised", action_id)


async def _tick_every(action_id: int, first_delay: float, on_tick: TickCallback) -> None:
    delay: Optional[float] = first_delay
    while delay is not None:
        await asyncio.sleep(max(delay, 0.0))
        try:
            delay = await on_tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[REGISTRY] Tick callback for action %s raised; ticker stopped", action_id)
            return


class ActionRegistry:
    """
    Mapping from action id to its live timer.

    All mutation of the map happens under one lock, so timer callbacks and
    command handlers may arm, release and disarm concurrently.
    """

    def __init__(self) -> None:
        self._timers: Dict[int, ArmedTimer] = {}
        self._lock = threading.Lock()

    def arm(self, action_id: int, delay: float, on_fire: FireCallback) -> ArmedTimer:
        """
        Start a timer that awaits ``on_fire`` once ``delay`` seconds elapse.

        An existing timer for the same id is cancelled and replaced.
        Must be called from inside the running event loop.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            _fire_after(action_id, delay, on_fire),
            name=f"trailbot-action-{action_id}",
        )
        timer = ArmedTimer(action_id=action_id, fire_task=task)

        with self._lock:
            previous = self._timers.pop(action_id, None)
            self._timers[action_id] = timer

        if previous is not None:
            logger.debug("[REGISTRY] Re-armed action %s; previous timer cancelled", action_id)
            previous.cancel()
        return timer

    def attach_ticker(self, action_id: int, first_delay: float, on_tick: TickCallback) -> bool:
        """
        Attach a recurring ticker to an armed action.

        The ticker first runs after ``first_delay`` seconds; each call to
        ``on_tick`` returns the delay until the next one, or ``None`` to stop.

        Returns:
            bool: False if ``action_id`` is not armed.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            timer = self._timers.get(action_id)
            if timer is None:
                return False
            if timer.tick_task is not None:
                timer.tick_task.cancel()
            timer.tick_task = loop.create_task(
                _tick_every(action_id, first_delay, on_tick),
                name=f"trailbot-ticker-{action_id}",
            )
        return True

    def release(self, action_id: int) -> ArmedTimer | None:
        """Remove an entry without cancelling its tasks. Used by the firing task itself."""
        with self._lock:
            return self._timers.pop(action_id, None)

    def disarm(self, action_id: int) -> bool:
        """Cancel the timer (and ticker) for ``action_id``. No-op if absent."""
        with self._lock:
            timer = self._timers.pop(action_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def has(self, action_id: int) -> bool:
        with self._lock:
            return action_id in self._timers

    def clear(self) -> List[ArmedTimer]:
        """Cancel every timer and return the cancelled entries so callers can await them."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return timers

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)
