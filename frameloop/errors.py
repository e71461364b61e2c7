"""frameloop error types."""

from __future__ import annotations


class FrameloopError(Exception):
    """Base class for errors raised by the runtime itself."""


class MisuseError(FrameloopError):
    """Raised when the runtime is driven in a way it does not support.

    These are programming errors and are fatal to the offending call:
    - polling a Future that already handed out its result
    - resuming a Task that has already finished
    - awaiting a Future owned by another Task
    - registering a readiness source with no backing reactor
    - spawning on a closed loop, or running a loop re-entrantly
    """


class CancelledError(FrameloopError):
    """Delivered into a Task body on its final resumption after cancel().

    Also raised when awaiting (or taking the result of) a Task that ended
    cancelled.
    """


class ReactorError(FrameloopError):
    """Raised when the underlying wait primitive fails.

    Fatal to the current run when the wait itself fails. When the selector
    refuses a source a task suspends on, only that task fails with it.

    Attributes:
        cause: The original exception reported by the selector
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause
        self.cause = cause


class LoopStalledError(FrameloopError):
    """Raised when a run must finish a Task that nothing can ever wake."""


class TaskTimeoutError(FrameloopError):
    """Raised by with_timeout when the timer wins the race."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"timed out after {seconds:g} seconds")


__all__ = [
    "CancelledError",
    "FrameloopError",
    "LoopStalledError",
    "MisuseError",
    "ReactorError",
    "TaskTimeoutError",
]
