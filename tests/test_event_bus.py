"""Tests for EventBus."""

import threading
import time

import logbook
import pytest

from conftest import Recorder, wait_until
from gitagrip.core.event_bus import EventBus
from gitagrip.core.events import (
    GroupAdded,
    ScanCompleted,
    ScanRequested,
    StatusUpdated,
)
from gitagrip.models.repository import RepoStatus


class TestPublishSubscribe:
    """Tests for delivery and ordering."""

    def test_delivers_to_subscribed_type_only(self, bus: EventBus) -> None:
        """Test a handler only receives events of its type."""
        recorder = Recorder(bus, GroupAdded)

        bus.publish(GroupAdded(name="work"))
        bus.publish(ScanCompleted(count=3))
        assert bus.wait_idle(2)

        assert recorder.events == [GroupAdded(name="work")]

    def test_per_handler_order_matches_publish_order(self, bus: EventBus) -> None:
        """Test every handler sees events in publish order."""
        first = Recorder(bus, GroupAdded)
        second = Recorder(bus, GroupAdded)

        names = [f"group-{i}" for i in range(200)]
        for name in names:
            bus.publish(GroupAdded(name=name))
        assert bus.wait_idle(5)

        assert [e.name for e in first.events] == names
        assert [e.name for e in second.events] == names

    def test_order_preserved_across_types_for_one_handler(self, bus: EventBus) -> None:
        """Test a handler subscribed to two types sees them in publish order."""
        seen: list[object] = []

        def handler(event: object) -> None:
            # Slow enough that parallel delivery would interleave
            time.sleep(0.001)
            seen.append(event)

        bus.subscribe(GroupAdded, handler)
        bus.subscribe(ScanCompleted, handler)

        expected = []
        for i in range(50):
            expected.append(GroupAdded(name=str(i)))
            expected.append(ScanCompleted(count=i))
        for event in expected:
            bus.publish(event)
        assert bus.wait_idle(5)

        assert seen == expected

    def test_unsubscribe_one_type_keeps_the_other(self, bus: EventBus) -> None:
        """Test removing one registration leaves the handler's other types."""
        seen: list[object] = []

        def handler(event: object) -> None:
            seen.append(event)

        unsubscribe = bus.subscribe(GroupAdded, handler)
        bus.subscribe(ScanCompleted, handler)
        unsubscribe()

        bus.publish(GroupAdded(name="ignored"))
        bus.publish(ScanCompleted(count=1))
        assert bus.wait_idle(2)

        assert seen == [ScanCompleted(count=1)]

    def test_unsubscribe_stops_delivery(self, bus: EventBus) -> None:
        """Test no events arrive after unsubscribing."""
        seen: list[object] = []

        def handler(event: object) -> None:
            seen.append(event)

        unsubscribe = bus.subscribe(GroupAdded, handler)

        bus.publish(GroupAdded(name="before"))
        assert bus.wait_idle(2)
        unsubscribe()
        bus.publish(GroupAdded(name="after"))
        assert bus.wait_idle(2)

        assert seen == [GroupAdded(name="before")]

    def test_subscribe_unknown_type_rejected(self, bus: EventBus) -> None:
        """Test the event set is closed."""
        with pytest.raises(TypeError):
            bus.subscribe(str, lambda event: None)

    def test_publish_after_close_is_ignored(self) -> None:
        """Test publishing on a closed bus returns False."""
        event_bus = EventBus()
        event_bus.start()
        event_bus.close()

        assert event_bus.publish(GroupAdded(name="late")) is False


class TestIsolation:
    """Tests for handler failures and slow handlers."""

    def test_handler_exception_does_not_stop_delivery(self, bus: EventBus) -> None:
        """Test a failing handler neither affects others nor later events."""
        calls: list[str] = []

        def broken(event: GroupAdded) -> None:
            calls.append(event.name)
            raise RuntimeError("boom")

        recorder = Recorder(bus, GroupAdded)
        bus.subscribe(GroupAdded, broken)

        bus.publish(GroupAdded(name="one"))
        bus.publish(GroupAdded(name="two"))
        assert bus.wait_idle(2)

        assert calls == ["one", "two"]
        assert [e.name for e in recorder.events] == ["one", "two"]

    def test_slow_handler_does_not_delay_others(self, bus: EventBus) -> None:
        """Test a blocked handler only delays itself."""
        release = threading.Event()

        def slow(event: object) -> None:
            release.wait(5)

        bus.subscribe(GroupAdded, slow)
        recorder = Recorder(bus, GroupAdded)

        for i in range(10):
            bus.publish(GroupAdded(name=str(i)))

        try:
            assert wait_until(lambda: len(recorder.events) == 10, timeout=2)
        finally:
            release.set()
        assert bus.wait_idle(5)


class TestBackpressure:
    """Tests for the bounded queue."""

    def test_publish_never_blocks_and_drops_when_full(self) -> None:
        """Test overflow drops events, counts them and logs a warning."""
        # Not started: nothing drains the queue
        event_bus = EventBus(capacity=5)
        handler = logbook.TestHandler()

        with handler.applicationbound():
            start = time.monotonic()
            results = [event_bus.publish(ScanRequested()) for _ in range(8)]
            elapsed = time.monotonic() - start

        assert results == [True] * 5 + [False] * 3
        assert event_bus.dropped == 3
        assert elapsed < 1.0
        assert handler.has_warning(
            "Event queue full, dropping ScanRequested (1 dropped so far)"
        )
        event_bus.close()

    def test_status_updates_not_logged(self, bus: EventBus) -> None:
        """Test the frequent status events stay out of the debug log."""
        handler = logbook.TestHandler()

        with handler.applicationbound():
            bus.publish(StatusUpdated(path="/tmp/x", status=RepoStatus(branch="main")))
            bus.publish(GroupAdded(name="logged"))
            assert bus.wait_idle(2)

        messages = [record.message for record in handler.records]
        assert not any("StatusUpdated" in message for message in messages)
        assert any("GroupAdded" in message for message in messages)
