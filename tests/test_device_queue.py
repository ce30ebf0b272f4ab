"""Per-device serialization"""

import asyncio

import pytest

from energy_console.services.device.device_queue import DeviceQueue


async def test_one_task_at_a_time_per_device():
    queue = DeviceQueue()
    active = 0
    peak = 0
    order = []

    def task(n):
        async def run():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.005)
            order.append(n)
            active -= 1
            return n
        return run

    results = await asyncio.gather(*(queue.enqueue("dev:a", task(n)) for n in range(5)))

    assert peak == 1
    assert order == [0, 1, 2, 3, 4]
    assert results == [0, 1, 2, 3, 4]


async def test_distinct_devices_run_concurrently():
    queue = DeviceQueue()
    released = asyncio.Event()

    async def waiter():
        await released.wait()
        return "a"

    async def releaser():
        released.set()
        return "b"

    # Deadlocks if the two devices shared one chain
    results = await asyncio.wait_for(
        asyncio.gather(queue.enqueue("dev:a", waiter), queue.enqueue("dev:b", releaser)),
        timeout=1,
    )
    assert results == ["a", "b"]


async def test_failure_reaches_only_its_caller():
    queue = DeviceQueue()

    async def boom():
        raise RuntimeError("wire fault")

    async def fine():
        return "ok"

    first = asyncio.create_task(queue.enqueue("dev:a", boom))
    second = asyncio.create_task(queue.enqueue("dev:a", fine))

    with pytest.raises(RuntimeError):
        await first
    assert await second == "ok"
    assert not queue.is_busy("dev:a")


async def test_stats_and_remove():
    queue = DeviceQueue()

    async def noop():
        return None

    await queue.enqueue("dev:a", noop)
    await queue.enqueue("dev:a", noop)

    assert queue.get_stats()["submitted"] == {"dev:a": 2}
    queue.remove("dev:a")
    assert queue.get_stats() == {"active": [], "submitted": {}}
