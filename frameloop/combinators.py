"""Composite futures: first_of (race), gather, with_timeout, chain.

A composite owns its children and an event source of its own. While a task
is suspended on the composite, each undecided child's source carries a
SignalWaker that forwards readiness into the composite's source; the task
itself only ever waits on that one source.

Children are always polled in argument order. Once a composite resolves it
removes its wakers from every child that is still registered, so a lost
race branch leaves nothing behind in the reactor (its timer is cancelled,
its descriptor unregistered).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from frameloop.errors import TaskTimeoutError
from frameloop.future import Future, as_future
from frameloop.outcome import PENDING, Failed, Poll, Ready
from frameloop.source import ReadinessSource, SignalWaker
from frameloop.types import SourceKind

if TYPE_CHECKING:
    from frameloop.loop import EventLoop
    from frameloop.reactor import Reactor

T = TypeVar("T")


@dataclass(frozen=True)
class RaceResult(Generic[T]):
    """Which child of a first_of won, and its value."""

    index: int
    value: T


def _validate_children(futures: tuple[Any, ...], *, name: str) -> tuple[Future[Any], ...]:
    if not futures:
        raise ValueError(f"{name} requires at least one future")
    normalized: list[Future[Any]] = []
    for i, f in enumerate(futures):
        if f is None:
            raise TypeError(f"{name} argument {i} must be a Future, got NoneType")
        try:
            normalized.append(as_future(f))
        except TypeError as exc:
            raise TypeError(f"{name} argument {i} must be a Future, got {type(f).__name__}") from exc
    return tuple(normalized)


class CompositeFuture(Future[T]):
    """Shared plumbing for futures built out of child futures."""

    def __init__(self, children: tuple[Future[Any], ...], label: str) -> None:
        super().__init__(ReadinessSource(SourceKind.EVENT, label=label))
        self._children = children
        self._reactor: Reactor | None = None
        self._watching: list[ReadinessSource] = []

    @property
    def children(self) -> tuple[Future[Any], ...]:
        return self._children

    def _undecided(self) -> list[Future[Any]]:
        return [child for child in self._children if not child.consumed]

    def _poll(self) -> Poll:
        assert self._source is not None
        self._source.reset()
        result = self._poll_children()
        if result is not PENDING:
            self._release()
        return result

    def _poll_children(self) -> Poll:
        raise NotImplementedError

    def arm(self, reactor: Reactor) -> None:
        assert self._source is not None
        self._reactor = reactor
        waker = SignalWaker(self._source)
        for child in self._undecided():
            child.arm(reactor)
            source = child.source
            if source is None or reactor.is_registered(source, waker):
                continue
            reactor.register(source, waker)
            if source not in self._watching:
                self._watching.append(source)

    def disarm(self, reactor: Reactor) -> None:
        self._reactor = reactor
        self._release()

    def _release(self) -> None:
        reactor = self._reactor
        if reactor is None:
            return
        assert self._source is not None
        waker = SignalWaker(self._source)
        for source in self._watching:
            reactor.deregister(source, waker)
        self._watching.clear()
        for child in self._undecided():
            child.disarm(reactor)


class FirstOf(CompositeFuture[RaceResult[Any]]):
    """Resolves with the first child to resolve (or fails with its error)."""

    def __init__(self, children: tuple[Future[Any], ...]) -> None:
        super().__init__(children, "first_of")

    def _poll_children(self) -> Poll:
        for index, child in enumerate(self._children):
            result = child.poll()
            if result is PENDING:
                continue
            if isinstance(result, Failed):
                return result
            return Ready(RaceResult(index=index, value=result.value))
        return PENDING


class Gather(CompositeFuture[list[Any]]):
    """Resolves once every child has resolved.

    Results are collected as children resolve and are never rolled back: if
    a later child fails, earlier values are still held in ``partial`` and the
    gather fails with the first failure in argument order.
    """

    def __init__(self, children: tuple[Future[Any], ...]) -> None:
        super().__init__(children, "gather")
        self._results: list[Ready[Any] | Failed | None] = [None] * len(children)

    @property
    def partial(self) -> list[Any]:
        return [r.value if isinstance(r, Ready) else None for r in self._results]

    def _poll_children(self) -> Poll:
        for i, child in enumerate(self._children):
            if self._results[i] is not None:
                continue
            result = child.poll()
            if result is not PENDING:
                self._results[i] = result
        if any(r is None for r in self._results):
            return PENDING
        for r in self._results:
            if isinstance(r, Failed):
                return r
        return Ready([r.value for r in self._results if isinstance(r, Ready)])


def first_of(*futures: Any) -> Future[RaceResult[Any]]:
    """Race ``futures``; the first to resolve wins and the rest are dropped."""
    return FirstOf(_validate_children(futures, name="first_of"))


race = first_of


def gather(*futures: Any) -> Future[list[Any]]:
    """Wait for every future; values come back in argument order."""
    return Gather(_validate_children(futures, name="gather"))


def with_timeout(future: Any, seconds: float, *, loop: EventLoop | None = None) -> Future[Any]:
    """Resolve like ``future`` unless ``seconds`` pass first.

    Raises:
        TaskTimeoutError: (when awaited) if the timer wins the race.
    """
    if loop is None:
        from frameloop.loop import current_loop

        loop = current_loop()
    timer = loop.sleep(seconds)

    def _unwrap(result: RaceResult[Any]) -> Any:
        if result.index == 1:
            raise TaskTimeoutError(seconds)
        return result.value

    return first_of(future, timer).map(_unwrap)


def chain(first: Any, *steps: Callable[[Any], Any]) -> Future[Any]:
    """Apply ``steps`` in order to the value of ``first``."""
    result = as_future(first)
    for step in steps:
        result = result.map(step)
    return result


__all__ = [
    "CompositeFuture",
    "FirstOf",
    "Gather",
    "RaceResult",
    "chain",
    "first_of",
    "gather",
    "race",
    "with_timeout",
]
