"""Observer fan-out: the named-event bus and the work log."""

from backbone.events.bus import EventBus, ObserverEvent
from backbone.events.worklog import EntryStatus, LogEntry, WorkLog

__all__ = [
    "EntryStatus",
    "EventBus",
    "LogEntry",
    "ObserverEvent",
    "WorkLog",
]
