"""
Scheduler tests.
"""

import asyncio

import pytest

from livefeed.util.scheduler import LoopScheduler, ManualScheduler


@pytest.mark.deterministic
class TestManualScheduler:
    """Test that simulated time fires timers in order and only when advanced."""

    def test_fires_in_due_order(self):
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(2.0, fired.append, "b")
        scheduler.call_later(1.0, fired.append, "a")
        scheduler.call_later(2.0, fired.append, "c")

        assert scheduler.advance(1.5) == 1
        assert fired == ["a"]
        assert scheduler.advance(0.5) == 2
        assert fired == ["a", "b", "c"]
        assert scheduler.time() == 2.0

    def test_cancelled_timers_do_not_fire(self):
        scheduler = ManualScheduler()
        fired = []
        handle = scheduler.call_later(1.0, fired.append, "x")
        assert scheduler.pending == 1

        handle.cancel()
        assert handle.cancelled()
        assert scheduler.pending == 0
        assert scheduler.advance(5.0) == 0
        assert fired == []

    def test_timers_scheduled_by_callbacks(self):
        scheduler = ManualScheduler()
        ticks = []

        def tick():
            ticks.append(scheduler.time())
            scheduler.call_later(1.0, tick)

        scheduler.call_later(1.0, tick)
        scheduler.advance(3.0)

        assert ticks == [1.0, 2.0, 3.0]
        assert scheduler.pending == 1

    def test_clock_visible_inside_callback(self):
        scheduler = ManualScheduler(start_time=10.0)
        seen = []
        scheduler.call_later(0.25, lambda: seen.append(scheduler.time()))
        scheduler.advance(1.0)
        assert seen == [10.25]
        assert scheduler.time() == 11.0

    def test_negative_delay_fires_immediately(self):
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(-1.0, fired.append, 1)
        scheduler.advance(0)
        assert fired == [1]

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualScheduler().advance(-1)


class TestLoopScheduler:

    async def test_call_later_on_running_loop(self):
        scheduler = LoopScheduler()
        done = asyncio.Event()
        handle = scheduler.call_later(0.01, done.set)

        await asyncio.wait_for(done.wait(), 1.0)
        assert not handle.cancelled()
        assert scheduler.loop is asyncio.get_running_loop()

    async def test_cancel(self):
        scheduler = LoopScheduler()
        fired = []
        handle = scheduler.call_later(0.01, fired.append, 1)
        handle.cancel()
        await asyncio.sleep(0.03)
        assert fired == []
