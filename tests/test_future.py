"""Tests for futures polled directly, without a running loop."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from frameloop import MisuseError, SimClock
from frameloop.future import (
    Event,
    Promise,
    SourceFuture,
    YieldFuture,
    as_future,
    completed,
    failed,
)
from frameloop.outcome import PENDING, Failed, Ready
from frameloop.reactor import Reactor
from frameloop.source import ReadinessSource
from frameloop.types import SourceKind, TaskId


@pytest.fixture
def reactor() -> Iterator[Reactor]:
    r = Reactor(SimClock())
    yield r
    r.close()


def _event(reactor: Reactor) -> ReadinessSource:
    return reactor.bind(ReadinessSource(SourceKind.EVENT))


class TestPollContract:
    def test_completed_future_is_ready_once(self):
        future = completed(7)
        assert future.poll() == Ready(7)
        assert future.consumed
        with pytest.raises(MisuseError, match="already handed out its result"):
            future.poll()

    def test_failed_future_reports_error_once(self):
        error = ValueError("boom")
        future = failed(error)
        result = future.poll()
        assert isinstance(result, Failed)
        assert result.error is error
        with pytest.raises(MisuseError):
            future.poll()

    def test_pending_can_be_polled_repeatedly(self, reactor):
        source = _event(reactor)
        future = SourceFuture(source, "hit")
        assert future.poll() is PENDING
        assert future.poll() is PENDING
        source.signal()
        assert future.poll() == Ready("hit")

    def test_yield_future_is_pending_exactly_once(self):
        future = YieldFuture()
        assert future.poll() is PENDING
        assert future.poll() == Ready(None)


class TestOwnership:
    def test_second_task_cannot_claim(self):
        future = completed(1)
        first, second = TaskId.new(), TaskId.new()
        future.claim(first)
        future.claim(first)
        with pytest.raises(MisuseError, match="is awaited by"):
            future.claim(second)
        assert future.owner == first


class TestMap:
    def test_map_applies_continuation(self):
        assert completed(2).map(lambda v: v * 10).poll() == Ready(20)

    def test_map_captures_exception_as_failure(self):
        def explode(_):
            raise KeyError("missing")

        result = completed(1).map(explode).poll()
        assert isinstance(result, Failed)
        assert isinstance(result.error, KeyError)

    def test_map_passes_failure_through(self):
        error = RuntimeError("upstream")
        result = failed(error).map(lambda v: v + 1).poll()
        assert isinstance(result, Failed)
        assert result.error is error

    def test_map_shares_inner_source(self, reactor):
        source = _event(reactor)
        mapped = SourceFuture(source).map(str)
        assert mapped.source is source


class TestPromise:
    def test_complete_resolves_future(self, reactor):
        promise = Promise(_event(reactor))
        assert promise.future.poll() is PENDING
        promise.complete("value")
        assert promise.done()
        assert promise.future.poll() == Ready("value")

    def test_fail_resolves_with_error(self, reactor):
        promise = Promise(_event(reactor))
        error = ConnectionError("down")
        promise.fail(error)
        assert promise.future.poll() == Failed(error)

    def test_settling_twice_is_misuse(self, reactor):
        promise = Promise(_event(reactor))
        promise.complete(1)
        with pytest.raises(MisuseError, match="already settled"):
            promise.fail(RuntimeError())

    def test_unbound_source_cannot_be_signaled(self):
        promise = Promise(ReadinessSource(SourceKind.EVENT))
        with pytest.raises(MisuseError, match="no backing reactor"):
            promise.complete(1)


class TestEvent:
    def test_each_waiter_gets_its_own_future(self, reactor):
        event = Event(_event(reactor))
        a, b = event.wait(), event.wait()
        assert a is not b
        event.set()
        assert event.is_set()
        assert a.poll() == Ready(None)
        assert b.poll() == Ready(None)

    def test_clear_rearms(self, reactor):
        event = Event(_event(reactor))
        event.set()
        event.clear()
        assert not event.is_set()
        assert event.wait().poll() is PENDING


class TestAsFuture:
    def test_none_becomes_yield(self):
        assert isinstance(as_future(None), YieldFuture)

    def test_future_passes_through(self):
        future = completed(1)
        assert as_future(future) is future

    def test_rejects_other_objects(self):
        with pytest.raises(TypeError, match="expected a Future or TaskHandle, got int"):
            as_future(42)
