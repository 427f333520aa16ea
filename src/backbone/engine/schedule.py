"""Adaptive rest: how long the engine waits before the next cycle.

    success / provider error / no work  → cycle_interval_ms  (15 min)
    rate limit anywhere in the cycle    → rate_limit_ms      (30 min)
    inside the quiet-hours window       → quiet_hours_ms     (60 min)
"""

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum

from backbone.core.errors import ConfigError
from backbone.engine.state import RestLevel

MINUTE_MS = 60_000

_WINDOW_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True, slots=True)
class QuietHours:
    """Local-time window with no work; may span midnight (22:00-07:00)."""

    start: time
    end: time

    @classmethod
    def parse(cls, value: str) -> "QuietHours":
        match = _WINDOW_PATTERN.match(value)
        if not match:
            raise ConfigError(context={"key": "quiet_hours", "detail": f"expected HH:MM-HH:MM, got {value!r}"})
        sh, sm, eh, em = (int(g) for g in match.groups())
        try:
            return cls(time(sh, sm), time(eh, em))
        except ValueError as e:
            raise ConfigError(context={"key": "quiet_hours", "detail": str(e)}, cause=e) from e

    def contains(self, moment: datetime) -> bool:
        now = moment.time().replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= now < self.end
        return now >= self.start or now < self.end

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True, slots=True)
class QuietHoursSkip:
    """Scheduling decision (not an error): the cycle was skipped for quiet hours."""

    window: QuietHours
    at: datetime

    @property
    def message(self) -> str:
        return f"Quiet hours ({self.window}); skipping work"


class CycleOutcome(Enum):
    SUCCESS = "success"
    NO_WORK = "no_work"
    PROVIDER_ERROR = "provider_error"
    RATE_LIMITED = "rate_limited"
    QUIET_HOURS = "quiet_hours"


@dataclass(frozen=True, slots=True)
class RestPolicy:
    cycle_interval_ms: int = 15 * MINUTE_MS
    rate_limit_ms: int = 30 * MINUTE_MS
    quiet_hours_ms: int = 60 * MINUTE_MS
    quiet_hours: QuietHours | None = QuietHours(time(22, 0), time(7, 0))

    def check_quiet_hours(self, now: datetime) -> QuietHoursSkip | None:
        if self.quiet_hours is not None and self.quiet_hours.contains(now):
            return QuietHoursSkip(self.quiet_hours, now)
        return None

    def rest_for(self, outcome: CycleOutcome) -> tuple[int, RestLevel]:
        """Delay in milliseconds and the rest level for a cycle outcome."""
        if outcome == CycleOutcome.QUIET_HOURS:
            return self.quiet_hours_ms, RestLevel.QUIET_HOURS
        if outcome == CycleOutcome.RATE_LIMITED:
            return self.rate_limit_ms, RestLevel.RATE_LIMITED
        return self.cycle_interval_ms, RestLevel.NORMAL

    def next_cycle_at(self, now: datetime, outcome: CycleOutcome) -> datetime:
        delay_ms, _ = self.rest_for(outcome)
        return now + timedelta(milliseconds=delay_ms)
