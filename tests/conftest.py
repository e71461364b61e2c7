"""
Shared fixtures for frameloop tests.

Most tests run the loop on a SimClock so timer-driven scenarios are
deterministic and take no wall time.
"""

from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest

from frameloop import EventLoop, LoopConfig, SimClock


@pytest.fixture
def clock() -> SimClock:
    return SimClock()


@pytest.fixture
def loop(clock: SimClock) -> Iterator[EventLoop]:
    event_loop = EventLoop(LoopConfig(), clock=clock)
    yield event_loop
    event_loop.close()


@pytest.fixture
def socket_pair() -> Iterator[tuple[socket.socket, socket.socket]]:
    left, right = socket.socketpair()
    left.setblocking(False)
    right.setblocking(False)
    yield left, right
    left.close()
    right.close()
