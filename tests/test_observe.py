"""Tests for loop snapshots and monitors."""

from __future__ import annotations

from typing import Any

import pytest
from frozendict import frozendict
from loguru import logger

from frameloop import (
    Cancelled,
    Completed,
    EventLoop,
    Failed,
    LoguruMonitor,
    LoopConfig,
    LoopMonitor,
    LoopSnapshot,
    LoopState,
    TaskState,
)


class RecordingMonitor(LoopMonitor):
    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.snapshots: list[LoopSnapshot] = []

    def on_spawn(self, handle):
        self.events.append(("spawn", handle.name))

    def on_outcome(self, handle, outcome):
        self.events.append(("outcome", handle.name, type(outcome).__name__))

    def on_pass(self, snapshot):
        self.snapshots.append(snapshot)


@pytest.fixture
def loguru_messages():
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove(sink_id)


class TestSnapshot:
    def test_snapshot_reports_tasks_and_ready_queue(self, loop):
        def body():
            yield loop.sleep(1)

        first = loop.spawn(body())
        second = loop.spawn(body())

        before = loop.snapshot()
        assert before.state is LoopState.IDLE
        assert before.ready == (first.id, second.id)
        assert isinstance(before.tasks, frozendict)
        assert before.tasks[first.id] is TaskState.READY

        loop.run_until(lambda: True)
        after = loop.snapshot()
        assert after.ready == ()
        assert after.suspended == (first.id, second.id)
        assert after.passes == 1

    def test_snapshot_is_immutable(self, loop):
        snapshot = loop.snapshot()
        with pytest.raises(Exception):
            snapshot.passes = 5  # type: ignore[misc]


class TestMonitor:
    def test_monitor_sees_lifecycle(self, clock):
        monitor = RecordingMonitor()
        with EventLoop(LoopConfig(), clock=clock, monitor=monitor) as loop:

            def ok():
                yield loop.sleep(0.1)
                return 1

            def bad():
                yield loop.sleep(0.2)
                raise ValueError("bad")

            loop.spawn(ok(), name="ok")
            bad_handle = loop.spawn(bad(), name="bad")
            loop.run()
            bad_handle.outcome

        assert monitor.events == [
            ("spawn", "ok"),
            ("spawn", "bad"),
            ("outcome", "ok", "Completed"),
            ("outcome", "bad", "Failed"),
        ]
        assert [s.passes for s in monitor.snapshots] == [1, 2, 3]
        assert monitor.snapshots[-1].tasks == frozendict()

    def test_monitor_sees_cancellation_on_close(self, clock):
        monitor = RecordingMonitor()
        loop = EventLoop(LoopConfig(), clock=clock, monitor=monitor)
        loop.spawn(lambda: (yield loop.sleep(1)), name="sleepy")
        loop.run_until(lambda: True)
        loop.close()

        assert monitor.events[-1] == ("outcome", "sleepy", "Cancelled")


class TestLoguruMonitor:
    def test_logs_outcomes(self, clock, loguru_messages):
        with EventLoop(LoopConfig(), clock=clock, monitor=LoguruMonitor()) as loop:

            def failing():
                yield loop.sleep(0)
                raise KeyError("missing")

            handle = loop.spawn(failing(), name="failing")
            loop.run()
            assert isinstance(handle.outcome, Failed)

        text = "".join(loguru_messages)
        assert f"spawned {handle.id} (failing)" in text
        assert f"{handle.id} failed: KeyError('missing')" in text

    def test_pass_logging_is_opt_in(self, clock, loguru_messages):
        with EventLoop(
            LoopConfig(), clock=clock, monitor=LoguruMonitor(log_passes=True)
        ) as loop:
            loop.spawn(lambda: None)
            loop.run()

        assert any("pass 1 at t=0.000000" in m for m in loguru_messages)

    def test_outcome_levels(self, loguru_messages):
        monitor = LoguruMonitor()

        class _Handle:
            id = "task-x"
            name = "x"

        monitor.on_outcome(_Handle(), Completed(1))
        monitor.on_outcome(_Handle(), Cancelled())

        text = "".join(loguru_messages)
        assert "task-x completed" in text
        assert "task-x cancelled" in text
