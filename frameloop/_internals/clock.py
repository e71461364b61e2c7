"""Clock state for the reactor: wall-clock and virtual time."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Protocol


def coerce_finite_float(value: float, *, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise TypeError(f"{name} must be float, got {type(value).__name__}")
    coerced = float(value)
    if math.isnan(coerced) or math.isinf(coerced):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return coerced


class Clock(Protocol):
    is_virtual: bool

    def now(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...

    def advance_to(self, target_time: float) -> float: ...


class MonotonicClock:
    """Wall-clock time read from ``time.monotonic``."""

    is_virtual = False

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def advance_to(self, target_time: float) -> float:
        self.sleep(target_time - self.now())
        return self.now()


@dataclass
class SimClock:
    """Virtual clock: sleeping advances time instantly.

    The reactor treats a virtual clock as "nothing else happens while we
    wait", so timer-driven runs are deterministic and take no wall time.
    """

    _mut_current_time: float = 0.0

    is_virtual = True

    def __post_init__(self) -> None:
        self._mut_current_time = coerce_finite_float(
            self._mut_current_time,
            name="current_time",
        )

    @property
    def current_time(self) -> float:
        return self._mut_current_time

    def now(self) -> float:
        return self._mut_current_time

    def sleep(self, seconds: float) -> None:
        step = coerce_finite_float(seconds, name="seconds")
        if step > 0:
            self._mut_current_time += step

    def advance_to(self, target_time: float) -> float:
        target = coerce_finite_float(target_time, name="target_time")
        if target > self._mut_current_time:
            self._mut_current_time = target
        return self.current_time

    def jump_to(self, new_time: float) -> float:
        self._mut_current_time = coerce_finite_float(new_time, name="new_time")
        return self.current_time


__all__ = [
    "Clock",
    "MonotonicClock",
    "SimClock",
    "coerce_finite_float",
]
