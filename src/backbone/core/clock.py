"""Clock abstraction for deterministic scheduling.

The controller never reads the wall clock or sleeps directly; it asks its
Clock. Production code uses SystemClock, tests use ManualClock so that
"rest 15 minutes" completes instantly and every computed timestamp is exact.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of time for the engine."""

    def now(self) -> datetime:
        """Current local time (timezone-aware)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend for the given number of seconds."""
        ...


class SystemClock:
    """Wall-clock time and real asyncio sleeps."""

    def now(self) -> datetime:
        return datetime.now().astimezone()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


@dataclass(slots=True)
class ManualClock:
    """Clock that only moves when told to.

    ``sleep()`` advances the clock by the requested amount and yields once to
    the event loop, so a loop that rests for an hour finishes immediately.

    Usage:
        clock = ManualClock(datetime(2026, 3, 2, 12, 0).astimezone())
        clock.advance(minutes=5)
    """

    current: datetime
    sleeps: list[float] = field(default_factory=list)
    """Every duration passed to sleep(), in order."""

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward (keyword arguments as for timedelta)."""
        self.current = self.current + timedelta(**delta)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current = self.current + timedelta(seconds=max(0.0, seconds))
        await asyncio.sleep(0)
