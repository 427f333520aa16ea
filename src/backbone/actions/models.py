"""Action data model and its one-directional lifecycle.

    proposed ──► approved ──► running ──► completed
        │            │                └─► failed
        └──► rejected ◄┘

completed, failed and rejected are terminal: any further change raises
InvalidTransitionError.

An approved action only runs once it is due (scheduled_for has passed) and
every action it depends on has finished.
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from backbone.core.errors import invalid_transition
from backbone.core.types import from_iso, new_id, to_iso

# (goal_id, action type, normalized title)
Fingerprint = tuple[str | None, str, str]


class ActionType(Enum):
    RESEARCH = "research"
    ANALYZE = "analyze"
    PLAN = "plan"
    EXECUTE = "execute"
    COMMUNICATE = "communicate"
    BROWSER = "browser"
    HEALTH = "health"
    FAMILY = "family"

    @classmethod
    def parse(cls, value: "str | ActionType | None") -> "ActionType":
        """Unknown types become EXECUTE, which is never auto-approved by default."""
        if isinstance(value, ActionType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.EXECUTE


class ActionStatus(Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


class Recurrence(Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    def next_after(self, moment: datetime) -> datetime:
        if self is Recurrence.MONTHLY:
            return _add_month(moment)
        return moment + _INTERVALS[self]


_INTERVALS = {
    Recurrence.HOURLY: timedelta(hours=1),
    Recurrence.DAILY: timedelta(days=1),
    Recurrence.WEEKLY: timedelta(weeks=1),
}


def _add_month(moment: datetime) -> datetime:
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


_TERMINAL = frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.REJECTED})

_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PROPOSED: frozenset({ActionStatus.APPROVED, ActionStatus.REJECTED}),
    ActionStatus.APPROVED: frozenset({ActionStatus.RUNNING, ActionStatus.REJECTED}),
    ActionStatus.RUNNING: frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED}),
}


@dataclass(frozen=True, slots=True)
class ProposedAction:
    """A candidate action as returned by a proposer (not yet tracked)."""

    title: str
    type: ActionType
    rationale: str = ""
    priority: int = 5
    goal_id: str | None = None
    backend_id: str | None = None
    """Preferred backend, if the proposer has an opinion."""

    prompt: str | None = None
    """Instructions for the backend; defaults to title + rationale."""


@dataclass(slots=True)
class ExecutionPlan:
    backend_id: str | None
    prompt: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend_id": self.backend_id,
            "prompt": self.prompt,
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionPlan":
        return cls(
            backend_id=data.get("backend_id"),
            prompt=data.get("prompt", ""),
            parameters=dict(data.get("parameters") or {}),
        )


@dataclass(slots=True)
class Action:
    """A single unit of proposed or executed work."""

    title: str
    type: ActionType
    requires_approval: bool
    """Decided once at proposal time; cannot be changed afterwards."""

    execution_plan: ExecutionPlan
    rationale: str = ""
    priority: int = 5
    goal_id: str | None = None
    status: ActionStatus = ActionStatus.PROPOSED
    result: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    approved_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    scheduled_for: datetime | None = None
    """Not run before this time."""

    depends_on: list[str] = field(default_factory=list)
    """Ids of actions that must finish first."""

    recurrence: Recurrence | None = None
    id: str = field(default_factory=lambda: new_id("action"))

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "requires_approval" and hasattr(self, "requires_approval"):
            raise AttributeError("requires_approval is frozen once an action is created")
        object.__setattr__(self, name, value)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_proposal(
        cls,
        proposal: ProposedAction,
        requires_approval: bool,
        created_at: datetime,
        goal_id: str | None = None,
    ) -> "Action":
        prompt = proposal.prompt or _default_prompt(proposal.title, proposal.rationale)
        return cls(
            title=proposal.title.strip(),
            type=proposal.type,
            requires_approval=requires_approval,
            execution_plan=ExecutionPlan(backend_id=proposal.backend_id, prompt=prompt),
            rationale=proposal.rationale,
            priority=proposal.priority,
            goal_id=proposal.goal_id or goal_id,
            created_at=created_at,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now

    def next_occurrence(self) -> "Action | None":
        """The following run of a recurring action, counted from its completion."""
        if self.recurrence is None or self.completed_at is None:
            return None
        plan = self.execution_plan
        return Action(
            title=self.title,
            type=self.type,
            requires_approval=self.requires_approval,
            execution_plan=ExecutionPlan(plan.backend_id, plan.prompt, dict(plan.parameters)),
            rationale=self.rationale,
            priority=self.priority,
            goal_id=self.goal_id,
            created_at=self.completed_at,
            scheduled_for=self.recurrence.next_after(self.completed_at),
            recurrence=self.recurrence,
        )

    def approve(self, now: datetime) -> None:
        self._transition(ActionStatus.APPROVED)
        self.approved_at = now

    def reject(self, now: datetime, reason: str | None = None) -> None:
        self._transition(ActionStatus.REJECTED)
        self.completed_at = now
        if reason:
            self.error = reason

    def start(self, now: datetime) -> None:
        self._transition(ActionStatus.RUNNING)
        self.started_at = now

    def complete(self, now: datetime, result: str | None) -> None:
        self._transition(ActionStatus.COMPLETED)
        self.result = result
        self.completed_at = now

    def fail(self, now: datetime, error: str) -> None:
        self._transition(ActionStatus.FAILED)
        self.error = error
        self.completed_at = now

    def _transition(self, target: ActionStatus) -> None:
        if target not in _TRANSITIONS.get(self.status, frozenset()):
            raise invalid_transition("action", self.id, self.status.value, target.value)
        self.status = target

    # =========================================================================
    # Identity & serialization
    # =========================================================================

    def fingerprint(self) -> Fingerprint:
        """Identity used to recognise a re-proposal of the same work."""
        return fingerprint(self.goal_id, self.type, self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "title": self.title,
            "type": self.type.value,
            "rationale": self.rationale,
            "priority": self.priority,
            "requires_approval": self.requires_approval,
            "execution_plan": self.execution_plan.to_dict(),
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": to_iso(self.created_at),
            "approved_at": to_iso(self.approved_at),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "scheduled_for": to_iso(self.scheduled_for),
            "depends_on": list(self.depends_on),
            "recurrence": self.recurrence.value if self.recurrence else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        return cls(
            id=data["id"],
            goal_id=data.get("goal_id"),
            title=data["title"],
            type=ActionType.parse(data.get("type")),
            rationale=data.get("rationale", ""),
            priority=int(data.get("priority", 5)),
            requires_approval=bool(data.get("requires_approval", True)),
            execution_plan=ExecutionPlan.from_dict(data.get("execution_plan") or {}),
            status=ActionStatus(data.get("status", "proposed")),
            result=data.get("result"),
            error=data.get("error"),
            created_at=from_iso(data.get("created_at")),
            approved_at=from_iso(data.get("approved_at")),
            started_at=from_iso(data.get("started_at")),
            completed_at=from_iso(data.get("completed_at")),
            scheduled_for=from_iso(data.get("scheduled_for")),
            depends_on=list(data.get("depends_on") or []),
            recurrence=Recurrence(data["recurrence"]) if data.get("recurrence") else None,
        )


_WHITESPACE = re.compile(r"\s+")


def fingerprint(goal_id: str | None, action_type: ActionType, title: str) -> Fingerprint:
    normalized = _WHITESPACE.sub(" ", title.strip().lower())
    return (goal_id, action_type.value, normalized)


def _default_prompt(title: str, rationale: str) -> str:
    if rationale:
        return f"{title}\n\n{rationale}"
    return title
