"""Min-heap queue of timer deadlines."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .clock import coerce_finite_float

if TYPE_CHECKING:
    from frameloop.source import ReadinessSource


@dataclass(frozen=True)
class TimerEntry:
    deadline: float
    sequence: int
    source: ReadinessSource


class TimerQueue:
    """Timer entries ordered by (deadline, registration order).

    Cancelled entries stay in the heap and are skipped when they reach the
    top; ``_live`` holds the one current entry per source.
    """

    def __init__(self) -> None:
        self._sequence = 0
        self._items: list[tuple[float, int, TimerEntry]] = []
        self._live: dict[ReadinessSource, TimerEntry] = {}

    def push(self, deadline: float, source: ReadinessSource) -> TimerEntry:
        target = coerce_finite_float(deadline, name="deadline")
        if source in self._live:
            raise ValueError(f"{source!r} already has a pending timer entry")
        self._sequence += 1
        entry = TimerEntry(deadline=target, sequence=self._sequence, source=source)
        heapq.heappush(self._items, (target, self._sequence, entry))
        self._live[source] = entry
        return entry

    def cancel(self, source: ReadinessSource) -> bool:
        return self._live.pop(source, None) is not None

    def peek_deadline(self) -> float | None:
        self._discard_cancelled()
        if not self._items:
            return None
        return self._items[0][0]

    def pop_due(self, now: float) -> list[TimerEntry]:
        due: list[TimerEntry] = []
        while True:
            self._discard_cancelled()
            if not self._items or self._items[0][0] > now:
                return due
            _, _, entry = heapq.heappop(self._items)
            del self._live[entry.source]
            due.append(entry)

    def clear(self) -> None:
        self._items.clear()
        self._live.clear()

    def _discard_cancelled(self) -> None:
        while self._items:
            entry = self._items[0][2]
            if self._live.get(entry.source) is entry:
                return
            heapq.heappop(self._items)

    def empty(self) -> bool:
        return not self._live

    def __contains__(self, source: object) -> bool:
        return source in self._live

    def __len__(self) -> int:
        return len(self._live)


__all__ = [
    "TimerEntry",
    "TimerQueue",
]
