"""Loop settings, optionally loaded from environment variables.

Recognised variables (all optional):

- ``FRAMELOOP_DEBUG``: "1"/"true"/"yes" logs every task resumption.
- ``FRAMELOOP_MAX_POLL_WAIT``: cap, in seconds, on one reactor wait.
- ``FRAMELOOP_MAX_RESUMES_PER_PASS``: cap on resumptions in one drain pass.
- ``FRAMELOOP_WARN_UNRETRIEVED``: warn about failed tasks nobody joined
  (default on).
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

ENV_PREFIX = "FRAMELOOP"

_TRUTHY = ("1", "true", "yes", "y", "on")


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _env_float(environ: Mapping[str, str], name: str) -> float | None:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None


def _env_int(environ: Mapping[str, str], name: str) -> int | None:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class LoopConfig:
    """Tuning knobs for an EventLoop.

    Attributes:
        max_poll_wait: Upper bound on a single reactor wait, in seconds.
            ``None`` lets the reactor wait until the next timer or descriptor.
        max_resumes_per_pass: Upper bound on task resumptions in one drain
            pass. ``None`` drains the whole ready queue before polling.
        debug: Log each task resumption and outcome at DEBUG level.
        warn_unretrieved: Log a warning when a failed task whose error
            nobody retrieved is garbage-collected.
    """

    max_poll_wait: float | None = None
    max_resumes_per_pass: int | None = None
    debug: bool = False
    warn_unretrieved: bool = True

    def __post_init__(self) -> None:
        if self.max_poll_wait is not None:
            if math.isnan(self.max_poll_wait) or self.max_poll_wait < 0:
                raise ValueError(f"max_poll_wait must be non-negative, got {self.max_poll_wait}")
        if self.max_resumes_per_pass is not None and self.max_resumes_per_pass < 1:
            raise ValueError(
                f"max_resumes_per_pass must be at least 1, got {self.max_resumes_per_pass}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LoopConfig:
        env = os.environ if environ is None else environ
        return cls(
            max_poll_wait=_env_float(env, _k("MAX_POLL_WAIT")),
            max_resumes_per_pass=_env_int(env, _k("MAX_RESUMES_PER_PASS")),
            debug=_env_bool(env, _k("DEBUG"), False),
            warn_unretrieved=_env_bool(env, _k("WARN_UNRETRIEVED"), True),
        )


__all__ = [
    "ENV_PREFIX",
    "LoopConfig",
]
