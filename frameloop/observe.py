"""
Observability for the event loop.

Public API:
    - LoopSnapshot: Point-in-time view of a loop's tasks and ready queue
    - LoopMonitor: Base class for lifecycle callbacks (all no-ops)
    - LoguruMonitor: Monitor that reports lifecycle events through loguru

Example usage:
    class CountPasses(LoopMonitor):
        def __init__(self):
            self.passes = 0

        def on_pass(self, snapshot):
            self.passes += 1

    loop = EventLoop(monitor=CountPasses())
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from frozendict import frozendict
from loguru import logger as loguru_logger

from frameloop.outcome import Cancelled, Completed, Failed, TerminalOutcome
from frameloop.types import LoopState, TaskId, TaskState

if TYPE_CHECKING:
    from frameloop.task import TaskHandle


@dataclass(frozen=True)
class LoopSnapshot:
    """
    Point-in-time view of an event loop.

    Attributes:
        state: Loop lifecycle state when the snapshot was taken.
        time: Loop clock reading.
        passes: Number of drain passes run so far.
        tasks: State of every task that has not finished.
        ready: Ready queue contents, front first.
    """

    state: LoopState
    time: float
    passes: int
    tasks: frozendict[TaskId, TaskState]
    ready: tuple[TaskId, ...]

    @property
    def suspended(self) -> tuple[TaskId, ...]:
        return tuple(
            task_id for task_id, state in self.tasks.items() if state is TaskState.SUSPENDED
        )


class LoopMonitor:
    """Receives loop lifecycle callbacks. Override what you need."""

    def on_spawn(self, handle: TaskHandle[Any]) -> None:
        pass

    def on_outcome(self, handle: TaskHandle[Any], outcome: TerminalOutcome) -> None:
        pass

    def on_pass(self, snapshot: LoopSnapshot) -> None:
        pass


class LoguruMonitor(LoopMonitor):
    """Logs spawns, outcomes and (optionally) every drain pass via loguru."""

    def __init__(self, log: Any = None, *, log_passes: bool = False) -> None:
        self._log = log if log is not None else loguru_logger.bind(component="frameloop")
        self._log_passes = log_passes

    def on_spawn(self, handle: TaskHandle[Any]) -> None:
        self._log.debug("spawned {} ({})", handle.id, handle.name)

    def on_outcome(self, handle: TaskHandle[Any], outcome: TerminalOutcome) -> None:
        if isinstance(outcome, Completed):
            self._log.debug("{} completed", handle.id)
        elif isinstance(outcome, Cancelled):
            self._log.info("{} cancelled", handle.id)
        elif isinstance(outcome, Failed):
            self._log.warning("{} failed: {!r}", handle.id, outcome.error)

    def on_pass(self, snapshot: LoopSnapshot) -> None:
        if not self._log_passes:
            return
        self._log.debug(
            "pass {} at t={:.6f}: {} task(s), {} ready",
            snapshot.passes,
            snapshot.time,
            len(snapshot.tasks),
            len(snapshot.ready),
        )


__all__ = [
    "LoguruMonitor",
    "LoopMonitor",
    "LoopSnapshot",
]
