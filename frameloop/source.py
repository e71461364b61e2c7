"""Readiness sources and wakers.

A ReadinessSource is the opaque "something to wait for": a timer deadline,
a descriptor becoming readable or writable, or a manually signaled event.
The reactor keeps, per source, the FIFO list of wakers blocked on it; when
the source becomes ready every waker is woken in registration order.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from frameloop.errors import MisuseError
from frameloop.types import SourceId, SourceKind, TaskId

if TYPE_CHECKING:
    from frameloop.loop import EventLoop
    from frameloop.reactor import Reactor


def fileno_of(fileobj: Any) -> int:
    """Return the descriptor number behind ``fileobj``."""
    if isinstance(fileobj, int):
        fd = fileobj
    else:
        try:
            fd = int(fileobj.fileno())
        except (AttributeError, TypeError, ValueError):
            raise ValueError(f"Invalid file object: {fileobj!r}") from None
    if fd < 0:
        raise ValueError(f"Invalid file descriptor: {fd}")
    return fd


class ReadinessSource:
    """Something a task can block on.

    A source is bound to at most one reactor. Loop factories bind at
    creation; sources made elsewhere (composite futures) are bound the first
    time a waker registers on them.
    """

    __slots__ = ("id", "kind", "deadline", "fileobj", "fd", "label", "fired", "_reactor")

    def __init__(
        self,
        kind: SourceKind,
        *,
        deadline: float | None = None,
        fileobj: Any = None,
        label: str | None = None,
    ) -> None:
        if kind is SourceKind.TIMER and deadline is None:
            raise ValueError("timer sources need a deadline")
        if kind.is_descriptor:
            if fileobj is None:
                raise ValueError(f"{kind.name.lower()} sources need a file object")
            self.fd: int | None = fileno_of(fileobj)
        else:
            self.fd = None
        self.id = SourceId.new()
        self.kind = kind
        self.deadline = deadline
        self.fileobj = fileobj
        self.label = label
        self.fired = False
        self._reactor: Reactor | None = None

    @property
    def reactor(self) -> Reactor | None:
        return self._reactor

    def bind(self, reactor: Reactor) -> None:
        if self._reactor is None:
            self._reactor = reactor
        elif self._reactor is not reactor:
            raise MisuseError(f"{self!r} belongs to a different event loop")

    def signal(self) -> None:
        """Mark a manual-event source ready and wake whoever waits on it."""
        if self.kind is not SourceKind.EVENT:
            raise MisuseError(f"only event sources can be signaled, not {self.kind.name.lower()}")
        if self._reactor is None:
            raise MisuseError(f"{self!r} has no backing reactor")
        self._reactor.signal(self)

    def reset(self) -> None:
        self.fired = False

    def __repr__(self) -> str:
        parts = [self.kind.name.lower(), str(self.id)]
        if self.label:
            parts.append(self.label)
        if self.deadline is not None:
            parts.append(f"deadline={self.deadline:.6f}")
        if self.fd is not None:
            parts.append(f"fd={self.fd}")
        return f"<ReadinessSource {' '.join(parts)}>"


class Waker(Protocol):
    def wake(self) -> None: ...


@dataclass(frozen=True)
class TaskWaker:
    """Puts a suspended task back into its loop's ready queue.

    The loop is held weakly: a waker parked in the reactor must not keep a
    dropped loop alive. Waking after the loop is gone does nothing.
    """

    loop_ref: weakref.ReferenceType[EventLoop]
    task_id: TaskId

    @classmethod
    def for_task(cls, loop: EventLoop, task_id: TaskId) -> TaskWaker:
        return cls(weakref.ref(loop), task_id)

    def wake(self) -> None:
        loop = self.loop_ref()
        if loop is not None:
            loop._wake_task(self.task_id)


@dataclass(frozen=True)
class SignalWaker:
    """Forwards a child's readiness into a composite future's own source."""

    target: ReadinessSource

    def wake(self) -> None:
        self.target.signal()


__all__ = [
    "ReadinessSource",
    "SignalWaker",
    "TaskWaker",
    "Waker",
    "fileno_of",
]
