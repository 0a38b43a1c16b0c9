"""
Timer scheduling for the feed engine.
LoopScheduler runs on the asyncio loop; ManualScheduler advances simulated time for tests.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback, *args)


class ManualTimer:
    """Timer handle for ManualScheduler."""

    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self._when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def when(self) -> float:
        return self._when

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._callback(*self._args)


class ManualScheduler:
    """A deterministic scheduler whose clock only moves when advanced.

    Timers fire in due-time order (ties in scheduling order). Timers scheduled
    by a callback fire within the same ``advance()`` call if they fall due
    inside the advanced window.
    """

    def __init__(self, start_time: float = 0.0):
        self._now = start_time
        self._queue: List[Tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self._now + max(0.0, delay), callback, args)
        heapq.heappush(self._queue, (timer.when(), next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers. Returns the number fired."""
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled():
                continue
            self._now = max(self._now, when)
            timer._run()
            fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        """Number of scheduled, not cancelled, timers."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled())
