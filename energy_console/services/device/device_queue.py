"""
Per-Device Command Queue

One FIFO chain per device id. A task starts only after every task
enqueued before it for the same device has settled, so at most one call
is on the wire per device. Tasks for different devices run concurrently.

A failed task does not break the chain; its error is delivered only to
its own caller. Queued tasks cannot be cancelled, only the in-flight
call's own deadline can abort it.
"""

import asyncio
from typing import Any, Awaitable, Callable

from energy_console.common.logging_setup import get_service_logger

logger = get_service_logger("device.queue")

TaskFactory = Callable[[], Awaitable[Any]]


class DeviceQueue:
    """Serializes work per device id"""

    def __init__(self):
        self._tails: dict[str, asyncio.Task] = {}
        self._submitted: dict[str, int] = {}

    def submit(self, device_id: str, task_factory: TaskFactory) -> asyncio.Task:
        """
        Chain a unit of work behind the device's current tail.

        The previous tail is captured synchronously, so submission order
        is execution order even when callers never await in between.
        """
        previous = self._tails.get(device_id)

        async def run_after_previous():
            if previous is not None and not previous.done():
                # wait() never raises the previous task's error
                await asyncio.wait([previous])
            return await task_factory()

        task = asyncio.create_task(run_after_previous(), name=f"device-queue:{device_id}")
        self._tails[device_id] = task
        self._submitted[device_id] = self._submitted.get(device_id, 0) + 1
        task.add_done_callback(lambda t: self._on_done(device_id, t))
        return task

    async def enqueue(self, device_id: str, task_factory: TaskFactory) -> Any:
        """
        Run task_factory() after all earlier work for device_id settles.

        Returns:
            The task's result; its exception propagates to this caller only
        """
        task = self.submit(device_id, task_factory)
        # A cancelled caller must not cancel the queued work for others
        return await asyncio.shield(task)

    def _on_done(self, device_id: str, task: asyncio.Task) -> None:
        if self._tails.get(device_id) is task:
            del self._tails[device_id]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Queued task for {device_id} failed: {task.exception()}")

    def is_busy(self, device_id: str) -> bool:
        tail = self._tails.get(device_id)
        return tail is not None and not tail.done()

    def remove(self, device_id: str) -> None:
        """Forget a device's chain (already running work still settles)"""
        self._tails.pop(device_id, None)
        self._submitted.pop(device_id, None)

    def get_stats(self) -> dict:
        return {
            "active": sorted(d for d in self._tails if self.is_busy(d)),
            "submitted": dict(self._submitted),
        }
