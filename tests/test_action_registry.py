import asyncio

import pytest

from trailbot.scheduler.action_registry import ActionRegistry


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def fire(self, label: str):
        async def _callback() -> None:
            self.calls.append(label)

        return _callback


@pytest.mark.asyncio
async def test_arm_fires_after_delay() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    registry.arm(1, 0.01, recorder.fire("first"))
    assert registry.has(1)

    await asyncio.sleep(0.05)

    assert recorder.calls == ["first"]
    registry.clear()


@pytest.mark.asyncio
async def test_rearm_replaces_previous_timer() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    first = registry.arm(1, 0.02, recorder.fire("old"))
    registry.arm(1, 0.02, recorder.fire("new"))
    await asyncio.sleep(0.06)

    assert recorder.calls == ["new"]
    assert first.fire_task.cancelled()
    assert len(registry) == 1
    registry.clear()


@pytest.mark.asyncio
async def test_disarm_cancels_timer() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    registry.arm(1, 0.02, recorder.fire("never"))

    assert registry.disarm(1) is True
    assert registry.disarm(1) is False
    await asyncio.sleep(0.05)

    assert recorder.calls == []
    assert not registry.has(1)


@pytest.mark.asyncio
async def test_release_keeps_the_task_running() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    registry.arm(1, 0.01, recorder.fire("released"))
    timer = registry.release(1)

    assert timer is not None
    assert not registry.has(1)
    assert len(registry) == 0
    await asyncio.sleep(0.05)
    assert recorder.calls == ["released"]


@pytest.mark.asyncio
async def test_fire_callback_errors_are_contained() -> None:
    registry = ActionRegistry()

    async def boom() -> None:
        raise RuntimeError("handler blew up")

    timer = registry.arm(1, 0, boom)
    await asyncio.sleep(0.02)

    assert timer.fire_task.done()
    assert timer.fire_task.exception() is None
    registry.clear()


@pytest.mark.asyncio
async def test_attach_ticker_requires_an_armed_action() -> None:
    registry = ActionRegistry()

    async def tick():
        return None

    assert registry.attach_ticker(99, 0, tick) is False


@pytest.mark.asyncio
async def test_ticker_runs_until_callback_returns_none() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()
    ticks: list[int] = []

    async def tick():
        ticks.append(len(ticks))
        return 0.01 if len(ticks) < 3 else None

    registry.arm(1, 1.0, recorder.fire("fire"))
    assert registry.attach_ticker(1, 0, tick) is True
    await asyncio.sleep(0.1)

    assert ticks == [0, 1, 2]
    registry.clear()


@pytest.mark.asyncio
async def test_stop_ticker_waits_for_the_ticker() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    async def tick():
        return 0.01

    timer = registry.arm(1, 1.0, recorder.fire("fire"))
    registry.attach_ticker(1, 0, tick)
    tick_task = timer.tick_task
    assert tick_task is not None

    await timer.stop_ticker()

    assert tick_task.done()
    assert timer.tick_task is None
    registry.clear()


@pytest.mark.asyncio
async def test_clear_cancels_everything() -> None:
    registry = ActionRegistry()
    recorder = _Recorder()

    registry.arm(1, 0.02, recorder.fire("a"))
    registry.arm(2, 0.02, recorder.fire("b"))

    timers = registry.clear()
    await asyncio.gather(*(t.fire_task for t in timers), return_exceptions=True)

    assert len(timers) == 2
    assert all(t.fire_task.cancelled() for t in timers)
    assert len(registry) == 0
    assert recorder.calls == []
