"""Reactor: turns timers, descriptors and manual signals into readiness.

The reactor owns every registration of a waker on a readiness source and
answers one question per loop iteration: which sources became ready within
the allowed wait?

- Timer sources sit in a TimerQueue; the nearest deadline bounds the wait.
- Descriptor sources are registered with a ``selectors`` selector and are
  one-shot: once reported ready (or once nobody waits on them) they are
  removed from the selector.
- Event sources are ready once signaled; a pending signal makes the next
  poll return without waiting.
"""

from __future__ import annotations

import logging
import selectors
from collections import deque
from typing import TYPE_CHECKING

from frameloop._internals import Clock, TimerQueue
from frameloop.errors import MisuseError, ReactorError
from frameloop.source import ReadinessSource, Waker
from frameloop.types import SourceKind

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

_EVENT_MASKS = {
    SourceKind.READABLE: selectors.EVENT_READ,
    SourceKind.WRITABLE: selectors.EVENT_WRITE,
}


class Reactor:
    """Polls registered readiness sources with a bounded wait."""

    def __init__(self, clock: Clock, selector: selectors.BaseSelector | None = None) -> None:
        self._clock = clock
        self._selector = selector
        self._owns_selector = selector is None
        self._timers = TimerQueue()
        self._signaled: deque[ReadinessSource] = deque()
        self._wakers: dict[ReadinessSource, list[Waker]] = {}
        self._descriptors: dict[int, dict[int, list[ReadinessSource]]] = {}
        self._closed = False

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, source: ReadinessSource) -> ReadinessSource:
        self._check_open()
        source.bind(self)
        return source

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, source: ReadinessSource, waker: Waker) -> None:
        """Block ``waker`` on ``source``; arm the source on first interest."""
        self._check_open()
        source.bind(self)
        wakers = self._wakers.get(source)
        if wakers is None:
            if source.fired:
                self._queue_signal(source)
            else:
                self._arm(source)
            wakers = self._wakers[source] = []
        if waker not in wakers:
            wakers.append(waker)

    def deregister(self, source: ReadinessSource, waker: Waker) -> bool:
        """Remove ``waker`` from ``source``; disarm the source once unwatched."""
        wakers = self._wakers.get(source)
        if not wakers or waker not in wakers:
            return False
        wakers.remove(waker)
        if not wakers:
            del self._wakers[source]
            self._disarm(source)
        return True

    def is_registered(self, source: ReadinessSource, waker: Waker | None = None) -> bool:
        wakers = self._wakers.get(source)
        if not wakers:
            return False
        return waker is None or waker in wakers

    def take_wakers(self, source: ReadinessSource) -> list[Waker]:
        """Detach and return the wakers of a source that became ready."""
        wakers = self._wakers.pop(source, [])
        self._disarm(source)
        return wakers

    def signal(self, source: ReadinessSource) -> None:
        """Mark an event source ready; the next poll reports it."""
        self._check_open()
        source.bind(self)
        if source.fired:
            return
        self._queue_signal(source)

    def fire(self, source: ReadinessSource) -> list[Waker]:
        """Mark ``source`` ready right now and hand back its wakers."""
        source.bind(self)
        source.fired = True
        return self.take_wakers(source)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def next_deadline(self) -> float | None:
        return self._timers.peek_deadline()

    def has_armed(self) -> bool:
        """True when some source can still become ready without user code."""
        return bool(self._signaled) or not self._timers.empty() or bool(self._descriptors)

    def poll(self, max_wait: float | None) -> list[ReadinessSource]:
        """Return the sources that became ready, waiting at most ``max_wait``.

        Args:
            max_wait: Upper bound on the wait in seconds. ``None`` waits until
                something is ready; ``0`` never waits.

        Returns:
            Newly ready sources: signaled events first (in signal order), then
            expired timers (in deadline order), then ready descriptors.

        Raises:
            ReactorError: If the selector wait fails.
        """
        self._check_open()
        timeout = self._effective_timeout(max_wait)
        io_ready = self._wait(timeout)

        ready: list[ReadinessSource] = []
        while self._signaled:
            ready.append(self._signaled.popleft())
        for entry in self._timers.pop_due(self._clock.now()):
            entry.source.fired = True
            ready.append(entry.source)
        ready.extend(io_ready)
        if ready:
            logger.debug("reactor poll: %d source(s) ready", len(ready))
        return ready

    def _effective_timeout(self, max_wait: float | None) -> float | None:
        if self._signaled:
            return 0.0
        timeout = max_wait
        deadline = self._timers.peek_deadline()
        if deadline is not None:
            until = max(0.0, deadline - self._clock.now())
            timeout = until if timeout is None else min(timeout, until)
        if timeout is not None and timeout < 0:
            timeout = 0.0
        return timeout

    def _idle(self, timeout: float | None) -> None:
        if not timeout:
            return
        if not self._clock.is_virtual:
            self._clock.sleep(timeout)
            return
        # land exactly on the deadline that bounded the wait
        target = self._clock.now() + timeout
        deadline = self._timers.peek_deadline()
        if deadline is not None and deadline <= target:
            target = deadline
        self._clock.advance_to(target)

    def _wait(self, timeout: float | None) -> list[ReadinessSource]:
        if not self._descriptors:
            self._idle(timeout)
            return []

        selector = self._get_selector()
        select_timeout = timeout
        if self._clock.is_virtual and timeout is not None:
            select_timeout = 0.0
        try:
            events = selector.select(select_timeout)
        except OSError as exc:
            raise ReactorError(f"selector wait failed: {exc}", exc) from exc

        ready: list[ReadinessSource] = []
        for key, mask in events:
            slots = self._descriptors.get(key.fd)
            if slots is None:
                continue
            for event_mask in (selectors.EVENT_READ, selectors.EVENT_WRITE):
                if mask & event_mask:
                    for source in slots.pop(event_mask, []):
                        source.fired = True
                        ready.append(source)
            self._update_selector(key.fd)

        if not ready and self._clock.is_virtual:
            self._idle(timeout)
        return ready

    # ------------------------------------------------------------------
    # Arming
    # ------------------------------------------------------------------

    def _arm(self, source: ReadinessSource) -> None:
        if source.kind is SourceKind.TIMER:
            assert source.deadline is not None
            self._timers.push(source.deadline, source)
        elif source.kind.is_descriptor:
            assert source.fd is not None
            mask = _EVENT_MASKS[source.kind]
            slots = self._descriptors.setdefault(source.fd, {})
            sources = slots.setdefault(mask, [])
            sources.append(source)
            try:
                self._update_selector(source.fd)
            except ReactorError:
                # Leave no trace of a source the selector refused.
                sources.remove(source)
                if not sources:
                    del slots[mask]
                if not slots:
                    self._descriptors.pop(source.fd, None)
                raise

    def _disarm(self, source: ReadinessSource) -> None:
        if source.kind is SourceKind.TIMER:
            self._timers.cancel(source)
        elif source.kind.is_descriptor:
            assert source.fd is not None
            slots = self._descriptors.get(source.fd)
            if slots is None:
                return
            sources = slots.get(_EVENT_MASKS[source.kind])
            if sources and source in sources:
                sources.remove(source)
                self._update_selector(source.fd)

    def _update_selector(self, fd: int) -> None:
        slots = self._descriptors.get(fd, {})
        events = 0
        for event_mask, sources in slots.items():
            if sources:
                events |= event_mask

        selector = self._get_selector()
        try:
            key = selector.get_key(fd)
        except KeyError:
            key = None

        try:
            if events == 0:
                self._descriptors.pop(fd, None)
                if key is not None:
                    selector.unregister(fd)
            elif key is None:
                selector.register(fd, events)
            elif key.events != events:
                selector.modify(fd, events)
        except (OSError, ValueError) as exc:
            raise ReactorError(f"selector update failed for fd {fd}: {exc}", exc) from exc

    def _queue_signal(self, source: ReadinessSource) -> None:
        source.fired = True
        if source not in self._signaled:
            self._signaled.append(source)

    def _get_selector(self) -> selectors.BaseSelector:
        if self._selector is None:
            self._selector = selectors.DefaultSelector()
        return self._selector

    def _check_open(self) -> None:
        if self._closed:
            raise MisuseError("reactor is closed")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def registered_sources(self) -> Iterable[ReadinessSource]:
        return tuple(self._wakers)

    def close(self) -> None:
        """Deregister every source and release the selector."""
        if self._closed:
            return
        self._closed = True
        self._wakers.clear()
        self._signaled.clear()
        self._timers.clear()
        if self._selector is not None:
            for fd in list(self._descriptors):
                try:
                    self._selector.unregister(fd)
                except (KeyError, ValueError, OSError):
                    logger.debug("fd %d was already gone from the selector", fd)
            if self._owns_selector:
                self._selector.close()
        self._descriptors.clear()


__all__ = [
    "Reactor",
]
