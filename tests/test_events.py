"""Tests for the observer EventBus and the WorkLog feed."""

import pytest

from backbone.events.bus import EventBus, ObserverEvent
from backbone.events.worklog import EntryStatus, WorkLog

from conftest import NOON


# =============================================================================
# EventBus
# =============================================================================


class TestEventBus:
    """Subscribe, emit and isolate failing observers."""

    def test_emit_reaches_subscribers_in_order(self) -> None:
        bus = EventBus()
        seen = []
        bus.on(ObserverEvent.ACTION_COMPLETED, lambda p: seen.append(("first", p)))
        bus.on(ObserverEvent.ACTION_COMPLETED, lambda p: seen.append(("second", p)))

        notified = bus.emit(ObserverEvent.ACTION_COMPLETED, {"id": "act_1"})

        assert notified == 2
        assert seen == [("first", {"id": "act_1"}), ("second", {"id": "act_1"})]

    def test_other_events_not_delivered(self) -> None:
        bus = EventBus()
        seen = []
        bus.on(ObserverEvent.ACTION_FAILED, seen.append)
        assert bus.emit(ObserverEvent.ACTION_COMPLETED, {}) == 0
        assert seen == []

    def test_duplicate_subscription_ignored(self) -> None:
        bus = EventBus()
        callback = lambda p: None  # noqa: E731
        assert bus.on(ObserverEvent.STATE_CHANGED, callback)
        assert not bus.on(ObserverEvent.STATE_CHANGED, callback)
        assert bus.subscriber_count(ObserverEvent.STATE_CHANGED) == 1

    def test_off(self) -> None:
        bus = EventBus()
        seen = []
        bus.on(ObserverEvent.REST_STARTED, seen.append)
        assert bus.off(ObserverEvent.REST_STARTED, seen.append)
        assert not bus.off(ObserverEvent.REST_STARTED, seen.append)
        bus.emit(ObserverEvent.REST_STARTED, {})
        assert seen == []

    def test_failing_observer_is_isolated(self) -> None:
        bus = EventBus()
        seen = []

        def broken(payload):
            raise RuntimeError("dashboard offline")

        bus.on(ObserverEvent.GOAL_PROGRESS, broken)
        bus.on(ObserverEvent.GOAL_PROGRESS, seen.append)

        notified = bus.emit(ObserverEvent.GOAL_PROGRESS, {"progress": 0.2})

        assert notified == 1
        assert seen == [{"progress": 0.2}]
        assert bus.stats == {"subscribers": 2, "emitted": 1, "errors": 1}

    @pytest.mark.asyncio
    async def test_async_observer_scheduled(self) -> None:
        bus = EventBus()
        seen = []

        async def observer(payload):
            seen.append(payload)

        async def broken(payload):
            raise ValueError("nope")

        bus.on(ObserverEvent.CYCLE_COMPLETED, observer)
        bus.on(ObserverEvent.CYCLE_COMPLETED, broken)

        assert bus.emit(ObserverEvent.CYCLE_COMPLETED, {"cycle": 1}) == 2
        assert seen == []
        await bus.drain()
        assert seen == [{"cycle": 1}]

    def test_async_observer_without_loop_is_dropped(self) -> None:
        bus = EventBus()

        async def observer(payload):
            pass

        bus.on(ObserverEvent.CYCLE_COMPLETED, observer)
        assert bus.emit(ObserverEvent.CYCLE_COMPLETED, {}) == 0
        assert bus.stats["errors"] == 1

    def test_clear(self) -> None:
        bus = EventBus()
        bus.on(ObserverEvent.ACTION_STARTED, print)
        bus.on(ObserverEvent.ACTION_FAILED, print)
        assert bus.clear() == 2
        assert bus.subscriber_count() == 0


# =============================================================================
# WorkLog
# =============================================================================


class TestWorkLog:
    """Append-only activity feed."""

    def test_write_stamps_entries(self, clock) -> None:
        log = WorkLog(clock=clock)
        entry = log.write("engine", "Cycle started", EntryStatus.STARTED, {"cycle": 1})

        assert entry.timestamp == NOON
        assert entry.to_dict() == {
            "source": "engine",
            "message": "Cycle started",
            "status": "started",
            "timestamp": NOON.isoformat(),
            "details": {"cycle": 1},
        }
        assert len(log) == 1

    def test_recent_is_oldest_first(self, clock) -> None:
        log = WorkLog(clock=clock)
        for i in range(5):
            log.write("engine", f"entry {i}")

        assert [e.message for e in log.recent(2)] == ["entry 3", "entry 4"]
        assert len(log.recent()) == 5
        assert log.recent(0) == []

    def test_by_source(self, clock) -> None:
        log = WorkLog(clock=clock)
        log.write("engine", "a")
        log.write("executor", "b")
        log.write("engine", "c")

        assert [e.message for e in log.by_source("engine")] == ["a", "c"]
        assert log.by_source("proposer") == []

    def test_bounded(self, clock) -> None:
        log = WorkLog(clock=clock, max_entries=3)
        for i in range(5):
            log.write("engine", str(i))
        assert [e.message for e in log.recent()] == ["2", "3", "4"]

    def test_subscribers_receive_entries(self, clock) -> None:
        log = WorkLog(clock=clock)
        seen = []
        assert log.subscribe(seen.append)
        assert not log.subscribe(seen.append)

        log.write("goals", "Added goal")
        assert [e.message for e in seen] == ["Added goal"]

        assert log.unsubscribe(seen.append)
        assert not log.unsubscribe(seen.append)
        log.write("goals", "ignored")
        assert len(seen) == 1

    def test_failing_subscriber_never_reaches_writer(self, clock) -> None:
        log = WorkLog(clock=clock)

        def broken(entry):
            raise RuntimeError("ui crashed")

        log.subscribe(broken)
        entry = log.write("engine", "still written")

        assert entry in log.recent()
        assert log.error_count == 1

    def test_entries_are_immutable(self, clock) -> None:
        entry = WorkLog(clock=clock).write("engine", "x")
        with pytest.raises(AttributeError):
            entry.message = "y"
