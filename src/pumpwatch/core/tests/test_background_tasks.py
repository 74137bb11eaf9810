"""
Tests for IntervalTask.

IntervalTask runs the periodic loops for:
- Subscription queue drain
- Trigger evaluation drain
- Stale-token pruning
"""
import asyncio

import pytest
from unittest.mock import AsyncMock

from pumpwatch.core.background_tasks import IntervalTask


@pytest.mark.asyncio
class TestIntervalTask:
    """Tests for start/stop and tick behaviour."""

    async def test_callback_runs_on_interval(self):
        callback = AsyncMock()
        task = IntervalTask("test", 0.01, callback)

        await task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert callback.await_count >= 2

    async def test_stop_before_first_tick_runs_nothing(self):
        callback = AsyncMock()
        task = IntervalTask("test", 10.0, callback)

        await task.start()
        assert task.is_running
        await task.stop()

        callback.assert_not_awaited()
        assert not task.is_running

    async def test_errors_do_not_stop_loop(self):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        task = IntervalTask("test", 0.01, callback)

        await task.start()
        await asyncio.sleep(0.05)
        assert task.is_running
        await task.stop()

        assert callback.await_count >= 2

    async def test_stop_waits_for_running_tick(self):
        finished = []
        started = asyncio.Event()

        async def slow_tick():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(True)

        task = IntervalTask("test", 0.01, slow_tick)
        await task.start()
        await started.wait()
        await task.stop()

        assert finished == [True]

    async def test_double_start_is_ignored(self):
        task = IntervalTask("test", 10.0, AsyncMock())

        await task.start()
        first = task._task
        await task.start()

        assert task._task is first
        await task.stop()
