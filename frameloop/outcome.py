"""Poll results, resume signals and task outcomes.

The same small set of values flows through the whole runtime:

- ``Future.poll()`` returns ``PENDING``, ``Ready(value)`` or ``Failed(error)``.
- ``Task.resume(signal)`` is fed ``START``, ``Ready(value)``, ``Failed(error)``
  or ``CANCEL``.
- ``Task.resume`` answers with ``Suspended(source)``, ``Completed(value)``,
  ``Failed(error)`` or ``Cancelled()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, NoReturn, TypeAlias, TypeVar

from frameloop.errors import CancelledError

if TYPE_CHECKING:
    from frameloop.source import ReadinessSource

T = TypeVar("T")


class _Marker:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __reduce__(self) -> str:
        return self._name


PENDING = _Marker("PENDING")
"""Poll result: the future has not resolved yet."""

START = _Marker("START")
"""Resume signal for the first step of a task (the priming send)."""

CANCEL = _Marker("CANCEL")
"""Resume signal delivering cancellation into a task body."""


@dataclass(frozen=True)
class Ready(Generic[T]):
    """A future resolved with a value."""

    value: T


@dataclass(frozen=True)
class Failed:
    """A future, or a task, ended with an exception.

    Used both as a poll result and as a terminal task outcome.
    """

    error: BaseException

    is_terminal = True

    def unwrap(self) -> NoReturn:
        raise self.error


@dataclass(frozen=True)
class Suspended:
    """Task reached an await point whose future is pending."""

    source: ReadinessSource

    is_terminal = False


@dataclass(frozen=True)
class Completed(Generic[T]):
    """Terminal: task body returned a value."""

    value: T

    is_terminal = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Cancelled:
    """Terminal: task ended because it was cancelled."""

    is_terminal = True

    def unwrap(self) -> NoReturn:
        raise CancelledError("task was cancelled")


Poll: TypeAlias = "_Marker | Ready[Any] | Failed"
Signal: TypeAlias = "_Marker | Ready[Any] | Failed"
TerminalOutcome: TypeAlias = "Completed[Any] | Failed | Cancelled"
Outcome: TypeAlias = "Suspended | Completed[Any] | Failed | Cancelled"


__all__ = [
    "CANCEL",
    "PENDING",
    "START",
    "Cancelled",
    "Completed",
    "Failed",
    "Outcome",
    "Poll",
    "Ready",
    "Signal",
    "Suspended",
    "TerminalOutcome",
]
