"""
Identity types and state enums for the frameloop runtime.

This module contains:
- TaskId: Unique identifier for tasks
- SourceId: Unique identifier for readiness sources
- TaskState: Lifecycle of a single task
- LoopState: Lifecycle of an event loop run
- SourceKind: What a readiness source waits for
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum, auto

_task_counter = itertools.count(1)
_source_counter = itertools.count(1)


# ============================================
# Identity Types
# ============================================

@dataclass(frozen=True, order=True)
class TaskId:
    """Unique identifier for a task.

    Ids are allocated from a process-wide counter, so ordering by id is
    ordering by spawn time and two loops never hand out the same id.
    """

    _id: int = field(default_factory=lambda: next(_task_counter))

    @classmethod
    def new(cls) -> TaskId:
        """Create a new unique TaskId."""
        return cls()

    def __str__(self) -> str:
        return f"task-{self._id}"

    def __repr__(self) -> str:
        return f"TaskId({self._id})"


@dataclass(frozen=True, order=True)
class SourceId:
    """Unique identifier for a readiness source."""

    _id: int = field(default_factory=lambda: next(_source_counter))

    @classmethod
    def new(cls) -> SourceId:
        """Create a new unique SourceId."""
        return cls()

    def __str__(self) -> str:
        return f"source-{self._id}"

    def __repr__(self) -> str:
        return f"SourceId({self._id})"


# ============================================
# State Enums
# ============================================

class TaskState(Enum):
    """Status of a task inside an event loop."""

    READY = auto()
    """Task is in the ready queue, or is the one currently executing."""

    SUSPENDED = auto()
    """Task is blocked on a readiness source."""

    COMPLETED = auto()
    """Task body returned a value."""

    CANCELLED = auto()
    """Task body let the cancellation signal escape (or was never started)."""

    FAILED = auto()
    """Task body raised an exception."""

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED)


class LoopState(Enum):
    """Status of an event loop."""

    IDLE = auto()
    """Not running; tasks may be queued for the next run."""

    RUNNING = auto()
    """Inside run_until/run_for."""

    DRAINING = auto()
    """Closing: outstanding tasks are getting their final resumption."""

    STOPPED = auto()
    """No tasks remain, or the loop has been closed."""


class SourceKind(Enum):
    """What a readiness source waits for."""

    TIMER = auto()
    READABLE = auto()
    WRITABLE = auto()
    EVENT = auto()

    @property
    def is_descriptor(self) -> bool:
        return self in (SourceKind.READABLE, SourceKind.WRITABLE)


__all__ = [
    "LoopState",
    "SourceId",
    "SourceKind",
    "TaskId",
    "TaskState",
]
