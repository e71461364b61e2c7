"""Tests for cancellation through the event loop."""

from __future__ import annotations

import pytest

from frameloop import (
    Cancelled,
    CancelledError,
    Completed,
    LoopState,
    TaskState,
    first_of,
)


class TestCancelReader:
    def test_cancel_removes_descriptor_registration(self, loop, socket_pair):
        left, right = socket_pair
        reads: list[bytes] = []

        def reader():
            yield loop.register_readable(left)
            reads.append(left.recv(16))

        outcomes = []

        def watcher(target):
            outcome = yield target.join()
            outcomes.append(outcome)

        c = loop.spawn(reader(), name="C")
        j = loop.spawn(watcher(c), name="joiner")
        loop.run_until(lambda: True)

        assert c.state is TaskState.SUSPENDED
        assert loop.reactor.has_armed()

        assert c.cancel() is True
        loop.run_until(j.is_done)

        assert outcomes == [Cancelled()]
        assert c.cancelled()
        assert not loop.reactor.has_armed()

        right.send(b"too late")
        assert loop.reactor.poll(0) == []
        loop.run()
        assert reads == []

    def test_awaiting_cancelled_task_raises(self, loop, clock):
        def sleeper():
            yield loop.sleep(5)

        def parent():
            child = loop.spawn(sleeper())
            yield loop.sleep(1)
            child.cancel()
            try:
                yield child
            except CancelledError:
                return "child cancelled"

        assert loop.run_until_complete(parent()) == "child cancelled"
        assert clock.now() == 1


class TestCancelSemantics:
    def test_cancel_twice_is_same_as_once(self, loop):
        cleanups: list[str] = []

        def body():
            try:
                yield loop.sleep(1)
            finally:
                cleanups.append("done")

        handle = loop.spawn(body())
        loop.run_until(lambda: True)

        assert handle.cancel() is True
        assert handle.cancel() is False
        loop.run()

        assert cleanups == ["done"]
        assert handle.outcome == Cancelled()

    def test_cancel_finished_task_is_noop(self, loop):
        handle = loop.spawn(lambda: "kept")
        loop.run()

        assert handle.cancel() is False
        assert handle.outcome == Completed("kept")

    def test_cancel_before_first_resume(self, loop):
        started: list[bool] = []

        def body():
            started.append(True)
            yield loop.sleep(1)

        handle = loop.spawn(body())
        handle.cancel()
        loop.run()

        assert started == []
        assert handle.cancelled()

    def test_cancel_removes_pending_timer(self, loop, clock):
        handle = loop.spawn(lambda: (yield loop.sleep(30)))
        loop.run_until(lambda: True)
        assert loop.reactor.next_deadline() == 30

        handle.cancel()
        loop.run()

        assert loop.reactor.next_deadline() is None
        assert clock.now() == 0
        assert loop.state is LoopState.STOPPED

    def test_body_may_absorb_cancellation(self, loop):
        def body():
            try:
                yield loop.sleep(1)
            except CancelledError:
                return "absorbed"

        handle = loop.spawn(body())
        loop.run_until(lambda: True)
        handle.cancel()
        loop.run()

        assert handle.result() == "absorbed"
        assert not handle.cancelled()

    def test_task_can_cancel_itself(self, loop, clock):
        steps: list[str] = []
        me = []

        def body():
            me[0].cancel()
            steps.append("after cancel")
            yield loop.sleep(1)
            steps.append("unreachable")

        me.append(loop.spawn(body()))
        loop.run()

        assert steps == ["after cancel"]
        assert me[0].cancelled()
        assert clock.now() == 0

    def test_cancel_unwinds_race_children(self, loop):
        def body():
            yield first_of(loop.sleep(10), loop.sleep(20))

        handle = loop.spawn(body())
        loop.run_until(lambda: True)
        assert loop.reactor.next_deadline() == 10

        handle.cancel()
        loop.run()

        assert handle.cancelled()
        assert loop.reactor.next_deadline() is None

    def test_result_of_cancelled_task_raises(self, loop):
        handle = loop.spawn(lambda: (yield loop.sleep(1)))
        handle.cancel()
        loop.run()

        with pytest.raises(CancelledError):
            handle.result()
