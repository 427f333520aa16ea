"""Engine state, owned exclusively by the controller."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from backbone.core.types import to_iso


class EngineMode(Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    PROPOSING = "proposing"
    EXECUTING = "executing"
    RESTING = "resting"


class RestLevel(Enum):
    NORMAL = "normal"
    RATE_LIMITED = "rate_limited"
    QUIET_HOURS = "quiet_hours"


@dataclass(slots=True)
class EngineState:
    mode: EngineMode = EngineMode.IDLE
    current_action_id: str | None = None
    last_cycle_at: datetime | None = None
    next_cycle_at: datetime | None = None
    rest_level: RestLevel = RestLevel.NORMAL
    cycle_interval_ms: int = 900_000
    cycle_count: int = 0
    rest_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "current_action_id": self.current_action_id,
            "last_cycle_at": to_iso(self.last_cycle_at),
            "next_cycle_at": to_iso(self.next_cycle_at),
            "rest_level": self.rest_level.value,
            "cycle_interval_ms": self.cycle_interval_ms,
            "cycle_count": self.cycle_count,
            "rest_reason": self.rest_reason,
        }
