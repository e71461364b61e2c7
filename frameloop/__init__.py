"""
frameloop - a single-threaded cooperative task runtime.

Task bodies are plain generators or coroutines that suspend on Futures
(timers, descriptor readiness, events, promises, other tasks). The event
loop resumes ready tasks in FIFO order, polls a reactor for readiness when
none are ready, and can be driven in bounded slices from a host's own
frame loop.

Example:
    >>> from frameloop import EventLoop
    >>>
    >>> loop = EventLoop()
    >>>
    >>> def worker():
    ...     yield loop.sleep(0.01)
    ...     return "done"
    >>>
    >>> loop.run_until_complete(worker())
    'done'
"""

# Runtime
from frameloop.loop import (
    EventLoop,
    current_loop,
    register_readable,
    register_writable,
    sleep,
    spawn,
    yield_now,
)
from frameloop.task import Task, TaskHandle
from frameloop.config import LoopConfig

# Futures and combinators
from frameloop.future import (
    Event,
    Future,
    Promise,
    Timer,
    as_future,
    completed,
    failed,
)
from frameloop.combinators import (
    RaceResult,
    chain,
    first_of,
    gather,
    race,
    with_timeout,
)

# Values and identities
from frameloop.outcome import (
    CANCEL,
    PENDING,
    START,
    Cancelled,
    Completed,
    Failed,
    Ready,
    Suspended,
)
from frameloop.types import LoopState, SourceKind, TaskId, TaskState

# Reactor and clocks
from frameloop.reactor import Reactor
from frameloop.source import ReadinessSource
from frameloop._internals import MonotonicClock, SimClock

# Errors
from frameloop.errors import (
    CancelledError,
    FrameloopError,
    LoopStalledError,
    MisuseError,
    ReactorError,
    TaskTimeoutError,
)

# Observability
from frameloop.observe import LoguruMonitor, LoopMonitor, LoopSnapshot

__version__ = "0.1.0"

__all__ = [
    # Runtime
    "EventLoop",
    "LoopConfig",
    "Task",
    "TaskHandle",
    "current_loop",
    "register_readable",
    "register_writable",
    "sleep",
    "spawn",
    "yield_now",
    # Futures and combinators
    "Event",
    "Future",
    "Promise",
    "RaceResult",
    "Timer",
    "as_future",
    "chain",
    "completed",
    "failed",
    "first_of",
    "gather",
    "race",
    "with_timeout",
    # Values and identities
    "CANCEL",
    "PENDING",
    "START",
    "Cancelled",
    "Completed",
    "Failed",
    "LoopState",
    "Ready",
    "SourceKind",
    "Suspended",
    "TaskId",
    "TaskState",
    # Reactor and clocks
    "MonotonicClock",
    "Reactor",
    "ReadinessSource",
    "SimClock",
    # Errors
    "CancelledError",
    "FrameloopError",
    "LoopStalledError",
    "MisuseError",
    "ReactorError",
    "TaskTimeoutError",
    # Observability
    "LoguruMonitor",
    "LoopMonitor",
    "LoopSnapshot",
]
