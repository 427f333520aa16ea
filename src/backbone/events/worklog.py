"""Work log: the append-only activity feed.

Every state transition and action lifecycle change produces one immutable
LogEntry. Subscribers receive entries in emission order; a subscriber that
raises is logged and counted but never reaches the writer.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from backbone.core.clock import Clock, SystemClock
from backbone.events.bus import Callback, deliver

logger = logging.getLogger(__name__)


class EntryStatus(Enum):
    INFO = "info"
    STARTED = "started"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One immutable work log record."""

    source: str
    message: str
    status: EntryStatus
    timestamp: datetime
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "message": self.message,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


@dataclass(slots=True)
class WorkLog:
    """Bounded in-memory work log with fan-out to subscribers.

    Example:
        >>> log = WorkLog()
        >>> log.subscribe(lambda entry: print(entry.message))
        >>> log.write("engine", "Cycle started")
    """

    clock: Clock = field(default_factory=SystemClock)
    max_entries: int = 1000

    _entries: deque[LogEntry] = field(init=False)
    _subscribers: list[Callback] = field(default_factory=list, init=False)
    _background: set[asyncio.Task] = field(default_factory=set, init=False)
    _error_count: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self._entries = deque(maxlen=self.max_entries)

    def write(
        self,
        source: str,
        message: str,
        status: EntryStatus = EntryStatus.INFO,
        details: dict[str, Any] | None = None,
    ) -> LogEntry:
        """Append an entry and notify subscribers."""
        entry = LogEntry(
            source=source,
            message=message,
            status=status,
            timestamp=self.clock.now(),
            details=details,
        )
        self._entries.append(entry)
        for callback in list(self._subscribers):
            if not deliver(callback, entry, self._background):
                self._error_count += 1
        return entry

    def subscribe(self, callback: Callback) -> bool:
        if callback in self._subscribers:
            return False
        self._subscribers.append(callback)
        return True

    def unsubscribe(self, callback: Callback) -> bool:
        try:
            self._subscribers.remove(callback)
            return True
        except ValueError:
            return False

    def recent(self, limit: int = 20) -> list[LogEntry]:
        """Most recent entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def by_source(self, source: str, limit: int = 20) -> list[LogEntry]:
        matches = [e for e in self._entries if e.source == source]
        return matches[-limit:] if limit > 0 else []

    @property
    def error_count(self) -> int:
        """Number of subscriber failures since creation."""
        return self._error_count

    def __len__(self) -> int:
        return len(self._entries)

    async def drain(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
