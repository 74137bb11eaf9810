"""
IntervalTask - Runs an async callback on a fixed interval.

Used for the periodic loops:
- Subscription queue drain (2 s)
- Trigger evaluation drain (100 ms)
- Stale-token pruning (60 s)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class IntervalTask:
    """
    A single background loop that calls ``callback`` every ``interval`` seconds.

    The loop waits on a stop event with the interval as timeout, so stop()
    wakes it immediately. stop() does not cancel a tick that is running: it
    waits for the tick to finish, so the callback never observes
    cancellation midway through its own work.

    Usage:
        task = IntervalTask("subscription_drain", 2.0, manager.drain)
        await task.start()
        # ... app runs ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        """Whether the loop is running."""
        return self._running

    async def start(self) -> None:
        """Start the loop."""
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"Started {self.name} task (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the loop, waiting for an in-flight tick."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        task = self._task
        self._task = None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        logger.info(f"Stopped {self.name} task")

    async def _loop(self) -> None:
        while self._running:
            try:
                # Wait for interval or stop
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.interval,
                    )
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                await self._callback()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {self.name}: {e}")
