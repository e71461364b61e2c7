"""Tasks and the resumption protocol.

A Task wraps a suspendable body (a generator or a coroutine) and exposes a
single entry point, ``resume(signal) -> Outcome``. Each call runs the body
from where it last stopped until it either reaches an await point whose
future is pending (``Suspended``) or finishes (``Completed``, ``Failed``,
``Cancelled``):

- the first call carries ``START`` (the priming ``send(None)``);
- later calls carry ``Ready(value)``/``Failed(error)`` for the future the
  task was last suspended on, sent or thrown into the body;
- ``CANCEL`` throws ``CancelledError`` into the body for its final step.

Futures that are already resolved when awaited do not suspend: their value
goes straight back into the body within the same ``resume`` call.
"""

from __future__ import annotations

import inspect
import logging
import weakref
from collections.abc import Callable, Coroutine, Generator
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

from frameloop.errors import CancelledError, MisuseError
from frameloop.future import Future, as_future
from frameloop.outcome import (
    CANCEL,
    PENDING,
    START,
    Cancelled,
    Completed,
    Failed,
    Outcome,
    Poll,
    Ready,
    Signal,
    Suspended,
    TerminalOutcome,
)
from frameloop.source import ReadinessSource
from frameloop.types import SourceKind, TaskId, TaskState

if TYPE_CHECKING:
    from frameloop.loop import EventLoop

T = TypeVar("T")

logger = logging.getLogger(__name__)

Body = Union[
    Generator[Any, Any, Any],
    Coroutine[Any, Any, Any],
    Callable[[], Any],
]


def _is_suspendable(obj: Any) -> bool:
    return inspect.isgenerator(obj) or inspect.iscoroutine(obj)


def describe_body(body: Any) -> str:
    if inspect.isgenerator(body):
        return body.gi_code.co_name
    if inspect.iscoroutine(body):
        return body.cr_code.co_name
    return getattr(body, "__qualname__", None) or type(body).__name__


class _UnretrievedFailure:
    __slots__ = ("label", "error", "retrieved")

    def __init__(self, label: str, error: str) -> None:
        self.label = label
        self.error = error
        self.retrieved = False

    def __call__(self) -> None:
        if not self.retrieved:
            logger.warning("%s failed and nobody retrieved its error: %s", self.label, self.error)


class Task:
    """A resumable computation driven step by step by an event loop."""

    def __init__(
        self,
        body: Body,
        *,
        name: str | None = None,
        done_source: ReadinessSource | None = None,
    ) -> None:
        if not _is_suspendable(body) and not callable(body):
            raise TypeError(
                f"task body must be a generator, coroutine or callable, got {type(body).__name__}"
            )
        self.id = TaskId.new()
        self.name = name or describe_body(body)
        self.state = TaskState.READY
        self.awaiting: Future[Any] | None = None
        self.outcome: TerminalOutcome | None = None
        self.cancelling = False
        self._retrieved = False
        self._failure_report: _UnretrievedFailure | None = None
        self.done_source = done_source or ReadinessSource(SourceKind.EVENT, label=f"done:{self.id}")
        self._factory: Callable[[], Any] | None = None
        self._body: Any = None
        if _is_suspendable(body):
            self._body = body
        else:
            self._factory = body
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def resume(self, signal: Signal) -> Outcome:
        """Run the body until its next suspension or its end.

        Args:
            signal: START for the first call; the Ready/Failed result of the
                future last suspended on; or CANCEL.

        Returns:
            Suspended(source), Completed(value), Failed(error) or Cancelled().

        Raises:
            MisuseError: If the task already reached a terminal outcome, or if
                the signal does not fit the task's position (START twice).
        """
        if self.state.is_terminal:
            raise MisuseError(f"cannot resume {self}: already {self.state.name.lower()}")
        self.state = TaskState.READY
        self.awaiting = None

        if signal is CANCEL:
            return self._deliver_cancel()

        if signal is START:
            if self._started:
                raise MisuseError(f"{self} was already started")
            self._started = True
            if self._body is None:
                try:
                    produced = self._factory()  # type: ignore[misc]
                except CancelledError:
                    return self._finish(Cancelled())
                except Exception as exc:
                    return self._finish(Failed(exc))
                finally:
                    self._factory = None
                if not _is_suspendable(produced):
                    return self._finish(Completed(produced))
                self._body = produced
            return self._drive(self._body.send, None)

        if not self._started:
            raise MisuseError(f"{self} must be started before it can receive {signal!r}")
        if isinstance(signal, Ready):
            return self._drive(self._body.send, signal.value)
        if isinstance(signal, Failed):
            return self._drive(self._body.throw, signal.error)
        raise MisuseError(f"unknown resume signal {signal!r}")

    def _drive(self, step: Callable[[Any], Any], arg: Any) -> Outcome:
        while True:
            try:
                yielded = step(arg)
            except StopIteration as stop:
                return self._finish(Completed(stop.value))
            except CancelledError:
                return self._finish(Cancelled())
            except Exception as exc:
                return self._finish(Failed(exc))

            try:
                future = as_future(yielded)
                future.claim(self.id)
                result: Poll = future.poll()
            except (TypeError, MisuseError) as exc:
                step, arg = self._body.throw, exc
                continue

            if result is PENDING:
                if future.source is None:
                    step, arg = self._body.throw, MisuseError(
                        f"{future!r} is pending but has no readiness source to wait on"
                    )
                    continue
                self.awaiting = future
                self.state = TaskState.SUSPENDED
                return Suspended(future.source)
            if isinstance(result, Ready):
                step, arg = self._body.send, result.value
            else:
                step, arg = self._body.throw, result.error

    def _deliver_cancel(self) -> Outcome:
        if not self._started or self._body is None:
            self._started = True
            self._factory = None
            if self._body is not None:
                self._body.close()
            return self._finish(Cancelled())

        try:
            self._body.throw(CancelledError(f"{self} was cancelled"))
        except StopIteration as stop:
            return self._finish(Completed(stop.value))
        except CancelledError:
            return self._finish(Cancelled())
        except Exception as exc:
            return self._finish(Failed(exc))

        # the body tried to await again during its final step
        logger.debug("%s awaited during cancellation cleanup; closing it", self)
        try:
            self._body.close()
        except Exception as exc:
            return self._finish(Failed(exc))
        return self._finish(Cancelled())

    @property
    def retrieved(self) -> bool:
        """True once someone has looked at this task's outcome."""
        return self._retrieved

    @retrieved.setter
    def retrieved(self, value: bool) -> None:
        self._retrieved = value
        if self._failure_report is not None:
            self._failure_report.retrieved = value

    def report_if_unretrieved(self) -> None:
        """Log this task's failure once the task is garbage-collected, unless
        its outcome was retrieved by then.
        """
        assert isinstance(self.outcome, Failed)
        if self._failure_report is not None:
            return
        self._failure_report = _UnretrievedFailure(str(self), repr(self.outcome.error))
        self._failure_report.retrieved = self._retrieved
        weakref.finalize(self, self._failure_report)

    def _finish(self, outcome: TerminalOutcome) -> TerminalOutcome:
        if isinstance(outcome, Completed):
            self.state = TaskState.COMPLETED
        elif isinstance(outcome, Cancelled):
            self.state = TaskState.CANCELLED
        else:
            self.state = TaskState.FAILED
        self.outcome = outcome
        self.awaiting = None
        self._body = None
        return outcome

    def __str__(self) -> str:
        return f"{self.id}({self.name})"

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.name!r} {self.state.name.lower()}>"


class JoinFuture(Future[Any]):
    """Resolves when a task reaches its terminal outcome.

    With ``unwrap=False`` it resolves with the outcome object itself and never
    fails; with ``unwrap=True`` it resolves with the task's value, fails with
    its error, or fails with CancelledError.
    """

    def __init__(self, task: Task, *, unwrap: bool) -> None:
        super().__init__(task.done_source)
        self._task = task
        self._unwrap = unwrap

    def claim(self, task_id: TaskId) -> None:
        if task_id == self._task.id:
            raise MisuseError(f"{self._task} cannot await its own completion")
        super().claim(task_id)

    def _poll(self) -> Poll:
        outcome = self._task.outcome
        if outcome is None:
            return PENDING
        self._task.retrieved = True
        if not self._unwrap:
            return Ready(outcome)
        if isinstance(outcome, Completed):
            return Ready(outcome.value)
        if isinstance(outcome, Cancelled):
            return Failed(CancelledError(f"{self._task} was cancelled"))
        return outcome


class TaskHandle(Generic[T]):
    """What spawn() returns: await it, join it, or cancel it."""

    __slots__ = ("_task", "_loop")

    def __init__(self, task: Task, loop: EventLoop) -> None:
        self._task = task
        self._loop = loop

    @property
    def id(self) -> TaskId:
        return self._task.id

    @property
    def name(self) -> str:
        return self._task.name

    @property
    def state(self) -> TaskState:
        return self._task.state

    @property
    def outcome(self) -> TerminalOutcome | None:
        outcome = self._task.outcome
        if outcome is not None:
            self._task.retrieved = True
        return outcome

    def cancel(self) -> bool:
        """Request cancellation; False when the task is already done or cancelling."""
        return self._loop.cancel(self._task.id)

    def is_done(self) -> bool:
        return self._task.state.is_terminal

    def cancelled(self) -> bool:
        return self._task.state is TaskState.CANCELLED

    def result(self) -> T:
        """Return the task's value, or raise its error / CancelledError."""
        outcome = self.outcome
        if outcome is None:
            raise MisuseError(f"{self._task} has not finished yet")
        return outcome.unwrap()

    def join(self) -> Future[TerminalOutcome]:
        """A future resolving with the task's terminal outcome (never fails)."""
        return JoinFuture(self._task, unwrap=False)

    def as_future(self) -> Future[T]:
        return JoinFuture(self._task, unwrap=True)

    def __await__(self) -> Generator[Future[T], Any, T]:
        value = yield self.as_future()
        return value

    __iter__ = __await__

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TaskHandle):
            return NotImplemented
        return self._task is other._task

    def __hash__(self) -> int:
        return hash(self._task.id)

    def __repr__(self) -> str:
        return f"TaskHandle({self._task.id}, {self._task.name!r}, {self._task.state.name.lower()})"


__all__ = [
    "Body",
    "JoinFuture",
    "Task",
    "TaskHandle",
    "describe_body",
]
