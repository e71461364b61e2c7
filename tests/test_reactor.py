"""Tests for the reactor: timers, descriptors, signals and wait failures."""

from __future__ import annotations

import selectors

import pytest

from frameloop import MisuseError, ReactorError, SimClock
from frameloop.reactor import Reactor
from frameloop.source import ReadinessSource
from frameloop.types import SourceKind


class RecordingWaker:
    def __init__(self, name: str, log: list[str]) -> None:
        self.name = name
        self.log = log

    def wake(self) -> None:
        self.log.append(self.name)


class FailingSelector(selectors.DefaultSelector):
    def select(self, timeout=None):
        raise OSError(9, "Bad file descriptor")


class RefusingSelector(selectors.DefaultSelector):
    def register(self, fileobj, events, data=None):
        raise OSError(9, "Bad file descriptor")


@pytest.fixture
def reactor(clock):
    r = Reactor(clock)
    yield r
    r.close()


def _timer(deadline: float) -> ReadinessSource:
    return ReadinessSource(SourceKind.TIMER, deadline=deadline)


class TestTimers:
    def test_poll_advances_virtual_time_to_next_deadline(self, reactor, clock):
        source = _timer(0.05)
        reactor.register(source, RecordingWaker("a", []))

        assert reactor.poll(None) == [source]
        assert clock.now() == 0.05
        assert source.fired

    def test_timers_fire_in_deadline_order(self, reactor, clock):
        late, early = _timer(0.02), _timer(0.01)
        reactor.register(late, RecordingWaker("late", []))
        reactor.register(early, RecordingWaker("early", []))

        clock.advance_to(1.0)
        assert reactor.poll(0) == [early, late]

    def test_max_wait_bounds_the_wait(self, reactor, clock):
        reactor.register(_timer(5.0), RecordingWaker("a", []))

        assert reactor.poll(0.5) == []
        assert clock.now() == 0.5
        assert reactor.next_deadline() == 5.0

    def test_deregistering_last_waker_cancels_timer(self, reactor):
        source = _timer(1.0)
        waker = RecordingWaker("a", [])
        reactor.register(source, waker)
        assert reactor.has_armed()

        assert reactor.deregister(source, waker) is True
        assert reactor.deregister(source, waker) is False
        assert not reactor.has_armed()
        assert reactor.next_deadline() is None

    def test_take_wakers_returns_registration_order(self, reactor):
        log: list[str] = []
        source = _timer(0.0)
        for name in ("first", "second", "third"):
            reactor.register(source, RecordingWaker(name, log))

        for waker in reactor.take_wakers(source):
            waker.wake()

        assert log == ["first", "second", "third"]
        assert not reactor.is_registered(source)


class TestSignals:
    def test_signaled_events_come_before_timers(self, reactor, clock):
        timer = _timer(0.0)
        event = reactor.bind(ReadinessSource(SourceKind.EVENT))
        reactor.register(timer, RecordingWaker("t", []))
        reactor.register(event, RecordingWaker("e", []))

        event.signal()

        assert reactor.poll(None) == [event, timer]
        assert clock.now() == 0.0

    def test_pending_signal_makes_poll_non_blocking(self, reactor, clock):
        reactor.register(_timer(10.0), RecordingWaker("t", []))
        event = reactor.bind(ReadinessSource(SourceKind.EVENT))
        event.signal()

        assert reactor.poll(None) == [event]
        assert clock.now() == 0.0

    def test_registering_on_fired_event_queues_it(self, reactor):
        event = reactor.bind(ReadinessSource(SourceKind.EVENT))
        event.fired = True
        reactor.register(event, RecordingWaker("late", []))
        assert reactor.poll(0) == [event]

    def test_only_events_can_be_signaled(self, reactor):
        with pytest.raises(MisuseError, match="only event sources"):
            reactor.bind(_timer(1.0)).signal()

    def test_source_cannot_move_between_reactors(self, reactor):
        other = Reactor(SimClock())
        source = reactor.bind(ReadinessSource(SourceKind.EVENT))
        with pytest.raises(MisuseError, match="different event loop"):
            other.register(source, RecordingWaker("a", []))
        other.close()


class TestDescriptors:
    def test_readable_fires_once_data_arrives(self, reactor, socket_pair):
        left, right = socket_pair
        source = ReadinessSource(SourceKind.READABLE, fileobj=left)
        reactor.register(source, RecordingWaker("reader", []))

        assert reactor.poll(0) == []
        right.send(b"ping")
        assert reactor.poll(0) == [source]
        assert source.fired

    def test_descriptor_sources_are_one_shot(self, reactor, socket_pair):
        left, right = socket_pair
        source = ReadinessSource(SourceKind.READABLE, fileobj=left)
        reactor.register(source, RecordingWaker("reader", []))
        right.send(b"ping")
        reactor.poll(0)
        reactor.take_wakers(source)

        assert not reactor.has_armed()
        assert reactor.poll(0) == []

    def test_read_and_write_interest_on_one_descriptor(self, reactor, socket_pair):
        left, right = socket_pair
        reader = ReadinessSource(SourceKind.READABLE, fileobj=left)
        writer = ReadinessSource(SourceKind.WRITABLE, fileobj=left)
        reactor.register(reader, RecordingWaker("r", []))
        reactor.register(writer, RecordingWaker("w", []))

        assert reactor.poll(0) == [writer]
        right.send(b"x")
        assert reactor.poll(0) == [reader]

    def test_deregistered_descriptor_is_never_reported(self, reactor, socket_pair):
        left, right = socket_pair
        source = ReadinessSource(SourceKind.READABLE, fileobj=left)
        waker = RecordingWaker("reader", [])
        reactor.register(source, waker)
        reactor.deregister(source, waker)

        right.send(b"ping")
        assert reactor.poll(0) == []
        assert not reactor.has_armed()

    def test_rejects_invalid_file_object(self):
        with pytest.raises(ValueError, match="Invalid file descriptor"):
            ReadinessSource(SourceKind.READABLE, fileobj=-1)

    def test_selector_failure_becomes_reactor_error(self, clock, socket_pair):
        left, _ = socket_pair
        reactor = Reactor(clock, FailingSelector())
        reactor.register(
            ReadinessSource(SourceKind.READABLE, fileobj=left), RecordingWaker("r", [])
        )

        with pytest.raises(ReactorError, match="selector wait failed") as excinfo:
            reactor.poll(0)

        assert isinstance(excinfo.value.cause, OSError)
        reactor.close()

    def test_refused_registration_leaves_nothing_armed(self, clock, socket_pair):
        left, _ = socket_pair
        reactor = Reactor(clock, RefusingSelector())
        source = ReadinessSource(SourceKind.READABLE, fileobj=left)
        waker = RecordingWaker("r", [])

        with pytest.raises(ReactorError, match="selector update failed"):
            reactor.register(source, waker)

        assert not reactor.has_armed()
        assert not reactor.is_registered(source)
        assert list(reactor.registered_sources()) == []
        assert reactor.poll(0) == []
        reactor.close()


class TestClose:
    def test_close_is_idempotent_and_final(self, clock):
        reactor = Reactor(clock)
        reactor.register(_timer(1.0), RecordingWaker("a", []))
        reactor.close()
        reactor.close()

        assert reactor.closed
        assert list(reactor.registered_sources()) == []
        with pytest.raises(MisuseError, match="reactor is closed"):
            reactor.poll(0)
