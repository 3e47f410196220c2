import asyncio

import pytest

from fleet_console.loops import IntervalTimer


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_timer_fires_immediately_then_on_interval():
    calls = []

    async def tick():
        calls.append(asyncio.get_running_loop().time())

    timer = IntervalTimer("test", 0.02, tick).start()
    await _wait_for(lambda: len(calls) >= 3)
    await timer.stop()
    assert not timer.running


@pytest.mark.asyncio
async def test_ticks_overlap_when_callback_is_slow():
    release = asyncio.Event()
    started = []

    async def slow_tick():
        started.append(1)
        await release.wait()

    timer = IntervalTimer("slow", 0.01, slow_tick).start()
    await _wait_for(lambda: len(started) >= 3)
    assert timer.inflight >= 3
    await timer.stop()
    assert timer.inflight == 0


@pytest.mark.asyncio
async def test_failing_tick_does_not_stop_timer():
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("tick exploded")

    timer = IntervalTimer("broken", 0.01, broken).start()
    await _wait_for(lambda: len(calls) >= 3)
    assert timer.running
    await timer.stop()


@pytest.mark.asyncio
async def test_no_ticks_after_stop():
    calls = []

    async def tick():
        calls.append(1)

    timer = IntervalTimer("stopped", 0.01, tick).start()
    await _wait_for(lambda: len(calls) >= 1)
    await timer.stop()
    seen = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == seen


@pytest.mark.asyncio
async def test_tick_can_stop_its_own_timer():
    calls = []
    holder = {}

    async def tick():
        calls.append(1)
        await holder["timer"].stop()
        calls.append(2)

    holder["timer"] = IntervalTimer("self-stop", 0.01, tick)
    holder["timer"].start()
    await _wait_for(lambda: calls == [1, 2])
    await asyncio.sleep(0.03)
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_start_is_idempotent():
    calls = []

    async def tick():
        calls.append(1)

    timer = IntervalTimer("idem", 10, tick)
    assert timer.start() is timer.start()
    await _wait_for(lambda: len(calls) == 1)
    await asyncio.sleep(0.01)
    assert len(calls) == 1
    await timer.stop()
