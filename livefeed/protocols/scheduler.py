"""
Timer scheduling protocol shared by the supervisor and the engine.
"""

from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    """Cancellable handle for one scheduled callback."""

    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    """Schedules callbacks on the single processing thread."""

    def time(self) -> float:
        """Monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...
