"""
Periodic Scheduler

Provides ScheduledLoop, which fires an async callback at a fixed
interval, accounting for callback execution time. Missed intervals are
skipped rather than queued, so a slow sweep never triggers a burst of
catch-up runs.

Usage:
    async def sweep():
        ...

    loop = ScheduledLoop(5.0, sweep, name="telemetry")
    await loop.start()
    loop.pause()
    loop.resume()
    loop.stop()
"""

import asyncio
import time
from typing import Callable, Awaitable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Fixed-interval scheduler for one async callback.

    The next run is scheduled relative to the original schedule, not
    relative to when the callback finished. A callback never overlaps
    itself: the loop awaits it before scheduling the next tick.

    Attributes:
        interval: Seconds between executions
        callback: Async function to call each interval
        paused: When True, ticks pass without calling the callback
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
    ):
        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.paused = False

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None

        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"scheduler:{self.name}")

    def stop(self) -> None:
        """Stop the scheduled loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def wait_stopped(self) -> None:
        """Stop and wait for the background task to finish."""
        task = self._task
        self.stop()
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    async def _run(self) -> None:
        """Main loop that fires callback at fixed intervals."""
        self._next_run = time.monotonic() + self.interval

        while self._running:
            sleep_duration = self._next_run - time.monotonic()
            if sleep_duration > 0:
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break

            if not self._running:
                break

            if not self.paused:
                try:
                    start = time.monotonic()
                    await self.callback()
                    self._last_execution_time = time.monotonic() - start
                    self._execution_count += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._error_count += 1
                    logger.error(f"Scheduled callback '{self.name}' error: {e}")

            # Skip missed intervals (don't queue up missed executions)
            now = time.monotonic()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.debug(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "paused": self.paused,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }
