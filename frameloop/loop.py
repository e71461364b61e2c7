"""The event loop: owns the tasks, the ready queue and the reactor.

One run pass, repeated until the caller's stop condition holds:

1. pop and resume every task that was in the ready queue when the pass
   began (tasks made ready during the pass wait for the next one);
2. a task that suspends is registered on its readiness source; a task
   that finishes is removed and its joiners become ready;
3. with nothing ready and tasks still suspended, poll the reactor (bounded
   by the nearest timer, ``LoopConfig.max_poll_wait`` and any run_for
   deadline) and make every task woken by the poll ready;
4. with nothing ready and nothing suspended, the loop is STOPPED.

The stop condition is evaluated after each pass, never in the middle of
one, so a run is always at least one whole pass.

Usage:
    loop = EventLoop()

    def worker():
        yield loop.sleep(0.05)
        return "done"

    handle = loop.spawn(worker())
    loop.run()
    assert handle.result() == "done"

An embedding host that must not block drives the loop a slice at a time::

    def on_frame():
        loop.run_for(frame_budget / 3)
"""

from __future__ import annotations

import logging
import weakref
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from frozendict import frozendict

from frameloop._internals import Clock, MonotonicClock
from frameloop._internals.clock import coerce_finite_float
from frameloop.config import LoopConfig
from frameloop.errors import LoopStalledError, MisuseError, ReactorError
from frameloop.future import Event, Future, Promise, SourceFuture, Timer, YieldFuture
from frameloop.observe import LoopMonitor, LoopSnapshot
from frameloop.outcome import (
    CANCEL,
    PENDING,
    START,
    Failed,
    Signal,
    Suspended,
    TerminalOutcome,
)
from frameloop.reactor import Reactor
from frameloop.source import ReadinessSource, TaskWaker
from frameloop.task import Body, Task, TaskHandle
from frameloop.types import LoopState, SourceKind, TaskId, TaskState

if TYPE_CHECKING:
    import selectors
    from collections.abc import Iterable

T = TypeVar("T")

logger = logging.getLogger(__name__)

_running_loop: EventLoop | None = None


def current_loop() -> EventLoop:
    """Return the loop whose run is currently executing.

    Raises:
        MisuseError: If no loop is running.
    """
    if _running_loop is None:
        raise MisuseError("no event loop is running")
    return _running_loop


def _non_negative_seconds(seconds: float) -> float:
    value = coerce_finite_float(seconds, name="seconds")
    if value < 0:
        raise ValueError(f"seconds must be non-negative, got {seconds}")
    return value


def _release_dropped(reactor: Reactor) -> None:
    # Runs when an unclosed loop is collected; the task bodies went with it.
    if not reactor.closed:
        logger.debug("event loop dropped without close(); releasing its reactor")
        reactor.close()


class EventLoop:
    """Single-threaded cooperative scheduler.

    Args:
        config: Loop settings; defaults to ``LoopConfig.from_env()``.
        clock: Time source; ``MonotonicClock`` by default, ``SimClock`` for
            deterministic virtual time.
        selector: Selector used for descriptor readiness; a
            ``selectors.DefaultSelector`` is created on first use otherwise.
        monitor: Optional LoopMonitor receiving lifecycle callbacks.
    """

    def __init__(
        self,
        config: LoopConfig | None = None,
        *,
        clock: Clock | None = None,
        selector: selectors.BaseSelector | None = None,
        monitor: LoopMonitor | None = None,
    ) -> None:
        self.config = config if config is not None else LoopConfig.from_env()
        self.clock: Clock = clock if clock is not None else MonotonicClock()
        self._reactor = Reactor(self.clock, selector)
        self._monitor = monitor
        self._tasks: dict[TaskId, Task] = {}
        self._ready: deque[TaskId] = deque()
        self._queued: set[TaskId] = set()
        self._overrides: dict[TaskId, Signal] = {}
        self._current: Task | None = None
        self._state = LoopState.IDLE
        self._closed = False
        self._passes = 0
        self._finalizer = weakref.finalize(self, _release_dropped, self._reactor)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def reactor(self) -> Reactor:
        return self._reactor

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def passes(self) -> int:
        return self._passes

    def tasks(self) -> tuple[TaskHandle[Any], ...]:
        """Handles of every task that has not finished yet."""
        return tuple(TaskHandle(task, self) for task in self._tasks.values())

    def snapshot(self) -> LoopSnapshot:
        return LoopSnapshot(
            state=self._state,
            time=self.clock.now(),
            passes=self._passes,
            tasks=frozendict({task_id: task.state for task_id, task in self._tasks.items()}),
            ready=tuple(self._ready),
        )

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        return (
            f"<EventLoop {self._state.name.lower()} tasks={len(self._tasks)} "
            f"ready={len(self._ready)}>"
        )

    # ------------------------------------------------------------------
    # Spawning and cancellation
    # ------------------------------------------------------------------

    def spawn(self, body: Body, *, name: str | None = None) -> TaskHandle[Any]:
        """Schedule ``body`` as a new ready task.

        Args:
            body: A generator or coroutine object, or a zero-argument callable
                returning one (or returning a plain value).
            name: Label used in logs and reprs; defaults to the body's name.

        Returns:
            A TaskHandle to await, join or cancel the task.
        """
        self._check_open()
        task = Task(body, name=name)
        self._reactor.bind(task.done_source)
        self._tasks[task.id] = task
        if self._state is LoopState.STOPPED:
            self._state = LoopState.IDLE
        elif self._state is LoopState.DRAINING:
            task.cancelling = True
        self._enqueue(task)
        handle: TaskHandle[Any] = TaskHandle(task, self)
        logger.debug("spawned %s", task)
        if self._monitor is not None:
            self._monitor.on_spawn(handle)
        return handle

    def cancel(self, task_id: TaskId) -> bool:
        """Request cancellation of a task; see TaskHandle.cancel."""
        task = self._tasks.get(task_id)
        if task is None:
            return False
        return self._request_cancel(task)

    def _request_cancel(self, task: Task) -> bool:
        if task.state.is_terminal or task.cancelling:
            return False
        task.cancelling = True
        self._release(task)
        if task is not self._current:
            self._enqueue(task)
        logger.debug("cancellation requested for %s", task)
        return True

    # ------------------------------------------------------------------
    # Futures bound to this loop
    # ------------------------------------------------------------------

    def _source(self, kind: SourceKind, **kwargs: Any) -> ReadinessSource:
        self._check_open()
        return self._reactor.bind(ReadinessSource(kind, **kwargs))

    def sleep(self, seconds: float) -> Future[None]:
        """A future resolving once ``seconds`` have passed on the loop clock."""
        seconds = _non_negative_seconds(seconds)
        return self.sleep_until(self.clock.now() + seconds)

    def sleep_until(self, deadline: float) -> Future[None]:
        deadline = coerce_finite_float(deadline, name="deadline")
        return SourceFuture(self._source(SourceKind.TIMER, deadline=deadline, label="sleep"))

    def timer(self, delay: float) -> Timer:
        """A deadline ``delay`` seconds from now that several tasks may wait on."""
        delay = _non_negative_seconds(delay)
        return Timer(self._source(SourceKind.TIMER, deadline=self.clock.now() + delay, label="timer"))

    def readable(self, fileobj: Any) -> Future[None]:
        """A future resolving once reading ``fileobj`` would not block."""
        return SourceFuture(self._source(SourceKind.READABLE, fileobj=fileobj))

    def writable(self, fileobj: Any) -> Future[None]:
        """A future resolving once writing ``fileobj`` would not block."""
        return SourceFuture(self._source(SourceKind.WRITABLE, fileobj=fileobj))

    register_readable = readable
    register_writable = writable

    def event(self) -> Event:
        return Event(self._source(SourceKind.EVENT, label="event"))

    def promise(self) -> Promise[Any]:
        return Promise(self._source(SourceKind.EVENT, label="promise"))

    def yield_now(self) -> Future[None]:
        return YieldFuture()

    # ------------------------------------------------------------------
    # Driving the loop
    # ------------------------------------------------------------------

    def run_until(self, stop_condition: Callable[[], bool] | None = None) -> None:
        """Run passes until ``stop_condition()`` holds or nothing is left to do.

        Returns early, leaving the loop IDLE, when every remaining task is
        suspended on something only user code can signal (an event or a
        promise) and no timer or descriptor is armed.

        Raises:
            ReactorError: If the reactor's wait primitive fails.
            MisuseError: If the loop is closed or already running.
        """
        self._run(stop_condition, deadline=None)

    def run_for(self, seconds: float) -> None:
        """Run for at most ``seconds`` of loop-clock time."""
        seconds = _non_negative_seconds(seconds)
        deadline = self.clock.now() + seconds
        self._run(lambda: self.clock.now() >= deadline, deadline=deadline)

    def run(self) -> None:
        """Run until no task is left (or no task can make progress)."""
        self._run(None, deadline=None)

    def run_until_complete(self, target: TaskHandle[T] | Body) -> T:
        """Block the host until one task finishes and return its value.

        Args:
            target: A handle from this loop, or a body to spawn first.

        Raises:
            LoopStalledError: If the task is suspended and nothing can wake it.
            Exception: Whatever the task failed with; CancelledError if it
                was cancelled.
        """
        if isinstance(target, TaskHandle):
            handle = target
            if handle._loop is not self:
                raise MisuseError(f"{handle} belongs to a different event loop")
        else:
            handle = self.spawn(target)
        self._run(handle.is_done, deadline=None)
        if not handle.is_done():
            raise LoopStalledError(f"{handle} is suspended and nothing armed can wake it")
        return handle.result()

    def _run(self, stop_condition: Callable[[], bool] | None, *, deadline: float | None) -> None:
        global _running_loop
        self._check_can_run()
        previous = _running_loop
        _running_loop = self
        self._state = LoopState.RUNNING
        try:
            while True:
                if self._ready:
                    self._drain()
                elif not self._tasks:
                    self._state = LoopState.STOPPED
                    return
                elif not self._reactor.has_armed():
                    logger.debug(
                        "%d task(s) suspended with nothing armed to wake them; leaving run",
                        len(self._tasks),
                    )
                    self._state = LoopState.IDLE
                    return
                else:
                    self._wake_sources(self._reactor.poll(self._poll_wait(deadline)))

                if stop_condition is not None and stop_condition():
                    self._state = LoopState.IDLE
                    return
        except BaseException:
            self._state = LoopState.IDLE
            raise
        finally:
            _running_loop = previous

    def _poll_wait(self, deadline: float | None) -> float | None:
        wait = self.config.max_poll_wait
        if deadline is not None:
            remaining = max(0.0, deadline - self.clock.now())
            wait = remaining if wait is None else min(wait, remaining)
        return wait

    def _drain(self) -> int:
        budget = len(self._ready)
        cap = self.config.max_resumes_per_pass
        if cap is not None:
            budget = min(budget, cap)
        resumed = 0
        for _ in range(budget):
            task_id = self._ready.popleft()
            self._queued.discard(task_id)
            task = self._tasks.get(task_id)
            if task is None:
                continue
            self._step(task)
            resumed += 1
        self._passes += 1
        if self._monitor is not None:
            self._monitor.on_pass(self.snapshot())
        return resumed

    def _step(self, task: Task) -> None:
        signal = self._signal_for(task)
        if signal is None:
            # woken, but what it awaits is still pending
            self._suspend(task)
            return

        if self.config.debug:
            logger.debug("resuming %s with %r", task, signal)
        self._current = task
        try:
            outcome = task.resume(signal)
        finally:
            self._current = None

        if isinstance(outcome, Suspended):
            if task.cancelling:
                self._release(task)
                self._enqueue(task)
            else:
                self._suspend(task)
        else:
            self._finish(task, outcome)

    def _signal_for(self, task: Task) -> Signal | None:
        if task.cancelling:
            self._release(task)
            self._overrides.pop(task.id, None)
            return CANCEL
        override = self._overrides.pop(task.id, None)
        if override is not None:
            return override
        if not task.started:
            return START
        future = task.awaiting
        if future is None:
            raise MisuseError(f"{task} is ready but is not awaiting anything")
        result = future.poll()
        if result is PENDING:
            return None
        return result

    def _suspend(self, task: Task) -> None:
        future = task.awaiting
        assert future is not None and future.source is not None
        task.state = TaskState.SUSPENDED
        if isinstance(future, YieldFuture):
            # A bare yield goes straight to the back of the ready queue.
            self._enqueue(task)
            return
        waker = TaskWaker.for_task(self, task.id)
        try:
            self._reactor.register(future.source, waker)
            future.arm(self._reactor)
        except (MisuseError, ReactorError) as exc:
            self._reactor.deregister(future.source, waker)
            future.disarm(self._reactor)
            task.awaiting = None
            self._overrides[task.id] = Failed(exc)
            self._enqueue(task)

    def _release(self, task: Task) -> None:
        future = task.awaiting
        if future is None:
            return
        if future.source is not None:
            self._reactor.deregister(future.source, TaskWaker.for_task(self, task.id))
        future.disarm(self._reactor)

    def _finish(self, task: Task, outcome: TerminalOutcome) -> None:
        self._tasks.pop(task.id, None)
        self._overrides.pop(task.id, None)
        joiners = self._reactor.fire(task.done_source)
        for waker in joiners:
            waker.wake()
        if (
            isinstance(outcome, Failed)
            and not joiners
            and not task.retrieved
            and self.config.warn_unretrieved
        ):
            task.report_if_unretrieved()
        if self.config.debug:
            logger.debug("%s finished: %r", task, outcome)
        if self._monitor is not None:
            self._monitor.on_outcome(TaskHandle(task, self), outcome)

    def _enqueue(self, task: Task) -> None:
        if task.id in self._queued or task.state.is_terminal:
            return
        task.state = TaskState.READY
        self._queued.add(task.id)
        self._ready.append(task.id)

    def _wake_task(self, task_id: TaskId) -> None:
        task = self._tasks.get(task_id)
        if task is not None:
            self._enqueue(task)

    def _wake_sources(self, sources: Iterable[ReadinessSource]) -> None:
        for source in sources:
            for waker in self._reactor.take_wakers(source):
                waker.wake()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise MisuseError("event loop is closed")

    def _check_can_run(self) -> None:
        self._check_open()
        if self._state in (LoopState.RUNNING, LoopState.DRAINING):
            raise MisuseError("event loop is already running")
        if _running_loop is not None and _running_loop is not self:
            raise MisuseError("another event loop is running")

    def close(self) -> None:
        """Cancel every outstanding task, let each run its final step, and
        deregister all readiness sources. The loop cannot be used afterwards.
        """
        global _running_loop
        if self._closed:
            return
        if self._state is LoopState.RUNNING:
            raise MisuseError("cannot close a running event loop")
        self._state = LoopState.DRAINING
        previous = _running_loop
        _running_loop = self
        try:
            for task in list(self._tasks.values()):
                self._request_cancel(task)
            while self._ready:
                self._drain()
        finally:
            _running_loop = previous
            self._tasks.clear()
            self._ready.clear()
            self._queued.clear()
            self._overrides.clear()
            self._reactor.close()
            self._finalizer.detach()
            self._closed = True
            self._state = LoopState.STOPPED

    def __enter__(self) -> EventLoop:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ----------------------------------------------------------------------
# Helpers bound to the running loop
# ----------------------------------------------------------------------

def sleep(seconds: float) -> Future[None]:
    return current_loop().sleep(seconds)


def register_readable(fileobj: Any) -> Future[None]:
    return current_loop().readable(fileobj)


def register_writable(fileobj: Any) -> Future[None]:
    return current_loop().writable(fileobj)


def spawn(body: Body, *, name: str | None = None) -> TaskHandle[Any]:
    return current_loop().spawn(body, name=name)


def yield_now() -> Future[None]:
    return current_loop().yield_now()


__all__ = [
    "EventLoop",
    "current_loop",
    "register_readable",
    "register_writable",
    "sleep",
    "spawn",
    "yield_now",
]
