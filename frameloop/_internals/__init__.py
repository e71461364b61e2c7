"""Internal clock and timer primitives."""

from .clock import Clock, MonotonicClock, SimClock
from .time_queue import TimerEntry, TimerQueue

__all__ = [
    "Clock",
    "MonotonicClock",
    "SimClock",
    "TimerEntry",
    "TimerQueue",
]
