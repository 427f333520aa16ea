"""Goal data model."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from backbone.core.types import from_iso, new_id, to_iso


class GoalCategory(Enum):
    FINANCE = "finance"
    HEALTH = "health"
    CAREER = "career"
    LEARNING = "learning"
    PERSONAL = "personal"
    SOCIAL = "social"
    FAMILY = "family"
    GROWTH = "growth"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "str | GoalCategory | None") -> "GoalCategory":
        """Lenient parse: unknown categories become OTHER."""
        if isinstance(value, GoalCategory):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.OTHER


class GoalStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (GoalStatus.COMPLETED, GoalStatus.ABANDONED)


class GoalPhase(Enum):
    DISCOVERY = "discovery"
    EXECUTION = "execution"
    REVIEW = "review"

    @classmethod
    def for_progress(cls, progress: float) -> "GoalPhase":
        if progress < 1 / 3:
            return cls.DISCOVERY
        if progress < 2 / 3:
            return cls.EXECUTION
        return cls.REVIEW


_PHASE_ORDER = {GoalPhase.DISCOVERY: 0, GoalPhase.EXECUTION: 1, GoalPhase.REVIEW: 2}


@dataclass(slots=True)
class Goal:
    """A user-facing objective the engine organizes work around.

    Mutated only through GoalManager.
    """

    title: str
    category: GoalCategory = GoalCategory.OTHER
    priority: int = 5
    """Higher = more urgent."""

    description: str = ""
    status: GoalStatus = GoalStatus.PENDING
    progress: float = 0.0
    """0..1, never decreases except via an explicit reset."""

    phase: GoalPhase = GoalPhase.DISCOVERY
    created_at: datetime | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    id: str = field(default_factory=lambda: new_id("goal"))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance_phase(self) -> None:
        """Move the phase forward to match progress (never backwards)."""
        target = GoalPhase.for_progress(self.progress)
        if _PHASE_ORDER[target] > _PHASE_ORDER[self.phase]:
            self.phase = target

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority,
            "status": self.status.value,
            "progress": self.progress,
            "phase": self.phase.value,
            "created_at": to_iso(self.created_at),
            "due_date": to_iso(self.due_date),
            "completed_at": to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Goal":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            category=GoalCategory.parse(data.get("category")),
            priority=int(data.get("priority", 5)),
            status=GoalStatus(data.get("status", "pending")),
            progress=float(data.get("progress", 0.0)),
            phase=GoalPhase(data.get("phase", "discovery")),
            created_at=from_iso(data.get("created_at")),
            due_date=from_iso(data.get("due_date")),
            completed_at=from_iso(data.get("completed_at")),
        )
