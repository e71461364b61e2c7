"""Futures: the unit of suspension.

A Future is polled, never waited on directly. ``poll()`` answers ``PENDING``
until the future resolves, then hands out ``Ready(value)`` or
``Failed(error)`` exactly once; polling again is a ``MisuseError``.

Every future that can be pending exposes the readiness source a task
suspends on. Composite futures additionally implement ``arm``/``disarm`` to
register their children with the reactor (see ``frameloop.combinators``).

Both generator bodies and coroutine bodies can await a future::

    def worker(loop):
        yield loop.sleep(0.1)
        data = yield promise.future

    async def worker(loop):
        await loop.sleep(0.1)
        data = await promise.future
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from frameloop.errors import MisuseError
from frameloop.outcome import PENDING, Failed, Poll, Ready
from frameloop.source import ReadinessSource
from frameloop.types import SourceKind, TaskId

if TYPE_CHECKING:
    from frameloop.reactor import Reactor

T = TypeVar("T")
U = TypeVar("U")


class Future(Generic[T]):
    """Base class for everything a task can await."""

    def __init__(self, source: ReadinessSource | None = None) -> None:
        self._source = source
        self._consumed = False
        self._owner: TaskId | None = None

    @property
    def source(self) -> ReadinessSource | None:
        return self._source

    @property
    def consumed(self) -> bool:
        """True once the terminal result has been handed out."""
        return self._consumed

    @property
    def owner(self) -> TaskId | None:
        return self._owner

    def poll(self) -> Poll:
        if self._consumed:
            raise MisuseError(f"{self!r} already handed out its result")
        result = self._poll()
        if result is not PENDING:
            self._consumed = True
        return result

    def _poll(self) -> Poll:
        raise NotImplementedError

    def claim(self, task_id: TaskId) -> None:
        """Record ``task_id`` as the only task allowed to await this future."""
        if self._owner is None:
            self._owner = task_id
        elif self._owner != task_id:
            raise MisuseError(f"{self!r} is awaited by {self._owner}, not {task_id}")

    def arm(self, reactor: Reactor) -> None:
        """Called when a task suspends on this future."""

    def disarm(self, reactor: Reactor) -> None:
        """Called when the awaiting task stops waiting (cancelled)."""

    def map(self, fn: Callable[[T], U]) -> Future[U]:
        """Return a future resolving with ``fn(value)`` once this one resolves."""
        return MappedFuture(self, fn)

    def __await__(self) -> Generator[Future[T], Any, T]:
        value = yield self
        return value

    __iter__ = __await__

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "pending"
        return f"<{type(self).__name__} {state} source={self._source!r}>"


class ReadyFuture(Future[T]):
    """A future that is resolved from the start."""

    def __init__(self, result: Ready[T] | Failed) -> None:
        super().__init__(None)
        self._result = result

    def _poll(self) -> Poll:
        return self._result


def completed(value: T) -> Future[T]:
    return ReadyFuture(Ready(value))


def failed(error: BaseException) -> Future[Any]:
    return ReadyFuture(Failed(error))


class SourceFuture(Future[T]):
    """Resolves with ``value`` once its readiness source has fired."""

    def __init__(self, source: ReadinessSource, value: T = None) -> None:  # type: ignore[assignment]
        super().__init__(source)
        self._value = value

    def _poll(self) -> Poll:
        assert self._source is not None
        if self._source.fired:
            return Ready(self._value)
        return PENDING


class YieldFuture(Future[None]):
    """Pending exactly once: lets every other ready task run first."""

    def __init__(self) -> None:
        super().__init__(ReadinessSource(SourceKind.EVENT, label="yield"))
        self._yielded = False

    def _poll(self) -> Poll:
        if not self._yielded:
            self._yielded = True
            return PENDING
        return Ready(None)

    def arm(self, reactor: Reactor) -> None:
        assert self._source is not None
        reactor.signal(self._source)


class MappedFuture(Future[U]):
    """Applies a continuation to another future's value."""

    def __init__(self, inner: Future[T], fn: Callable[[T], U]) -> None:
        super().__init__(inner.source)
        self._inner = inner
        self._fn = fn

    def _poll(self) -> Poll:
        result = self._inner.poll()
        if not isinstance(result, Ready):
            return result
        try:
            return Ready(self._fn(result.value))
        except Exception as exc:
            return Failed(exc)

    def arm(self, reactor: Reactor) -> None:
        self._inner.arm(reactor)

    def disarm(self, reactor: Reactor) -> None:
        self._inner.disarm(reactor)


class Promise(Generic[T]):
    """A future resolved by whichever code holds the promise.

    ``complete``/``fail`` may be called from a task body or from the host
    between loop ticks; either way the waiting task is woken on the next
    reactor poll.
    """

    def __init__(self, source: ReadinessSource) -> None:
        if source.kind is not SourceKind.EVENT:
            raise ValueError("promises are backed by event sources")
        self._source = source
        self._result: Ready[T] | Failed | None = None
        self.future: Future[T] = _PromiseFuture(self)

    def done(self) -> bool:
        return self._result is not None

    def complete(self, value: T) -> None:
        self._settle(Ready(value))

    def fail(self, error: BaseException) -> None:
        self._settle(Failed(error))

    def _settle(self, result: Ready[T] | Failed) -> None:
        if self._result is not None:
            raise MisuseError("promise was already settled")
        self._source.signal()
        self._result = result

    def __repr__(self) -> str:
        return f"<Promise {'settled' if self.done() else 'open'}>"


class _PromiseFuture(Future[T]):
    def __init__(self, promise: Promise[T]) -> None:
        super().__init__(promise._source)
        self._promise = promise

    def _poll(self) -> Poll:
        result = self._promise._result
        if result is None:
            return PENDING
        return result


class Event:
    """A manual-event source many tasks may wait on at once.

    ``wait()`` hands every waiter its own future; ``set()`` wakes them all in
    the order they started waiting.
    """

    def __init__(self, source: ReadinessSource) -> None:
        if source.kind is not SourceKind.EVENT:
            raise ValueError("events are backed by event sources")
        self._source = source

    @property
    def source(self) -> ReadinessSource:
        return self._source

    def is_set(self) -> bool:
        return self._source.fired

    def set(self) -> None:
        self._source.signal()

    def clear(self) -> None:
        self._source.reset()

    def wait(self) -> Future[None]:
        return SourceFuture(self._source)


class Timer:
    """A deadline several tasks can wait on."""

    def __init__(self, source: ReadinessSource) -> None:
        if source.kind is not SourceKind.TIMER:
            raise ValueError("timers are backed by timer sources")
        self._source = source

    @property
    def deadline(self) -> float:
        assert self._source.deadline is not None
        return self._source.deadline

    @property
    def source(self) -> ReadinessSource:
        return self._source

    def expired(self) -> bool:
        return self._source.fired

    def wait(self) -> Future[None]:
        return SourceFuture(self._source)


def as_future(obj: Any) -> Future[Any]:
    """Normalise something awaitable into a Future.

    Accepts futures, anything with an ``as_future()`` method (task handles)
    and ``None`` (a bare cooperative yield).
    """
    if isinstance(obj, Future):
        return obj
    if obj is None:
        return YieldFuture()
    convert = getattr(obj, "as_future", None)
    if callable(convert):
        return convert()
    raise TypeError(f"expected a Future or TaskHandle, got {type(obj).__name__}")


__all__ = [
    "Event",
    "Future",
    "MappedFuture",
    "Promise",
    "ReadyFuture",
    "SourceFuture",
    "Timer",
    "YieldFuture",
    "as_future",
    "completed",
    "failed",
]
