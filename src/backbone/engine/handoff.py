"""HandoffContext — what one cycle leaves for the next.

Written at the end of EXECUTING, read once at SELECTING, and treated as absent
once more than four hours old.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from backbone.core.types import from_iso, to_iso

if TYPE_CHECKING:
    from backbone.actions.models import Action
    from backbone.goals.models import Goal

HANDOFF_TTL = timedelta(hours=4)

_HANDOFF_BLOCK = re.compile(
    r"HANDOFF:\s*\n(.*?)(?:\n---|\n##|\nIMPORTANT|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_NEXT_TASK = re.compile(r"NEXT\s*TASK:\s*(.+)", re.IGNORECASE)
_CONTEXT = re.compile(r"CONTEXT:\s*(.+)", re.IGNORECASE)

_NOTES_LIMIT = 500


def extract_handoff_notes(output: str | None) -> tuple[str | None, str | None]:
    """Pull ``(next_task, notes)`` out of a ``HANDOFF:`` block in agent output.

    Returns (None, None) when the output has no such block.
    """
    if not output:
        return None, None
    match = _HANDOFF_BLOCK.search(output)
    if not match:
        return None, None

    raw = match.group(1).strip()
    if not raw:
        return None, None
    next_task = _NEXT_TASK.search(raw)
    context = _CONTEXT.search(raw)
    return (
        next_task.group(1).strip() if next_task else raw.splitlines()[0].strip(),
        context.group(1).strip() if context else raw[:_NOTES_LIMIT],
    )


@dataclass(frozen=True, slots=True)
class HandoffContext:
    created_at: datetime
    expires_at: datetime
    goal_id: str | None = None
    goal_title: str | None = None
    action_id: str | None = None
    action_summary: str | None = None
    next_task: str | None = None
    notes: str | None = None

    @classmethod
    def create(
        cls,
        now: datetime,
        goal: "Goal | None" = None,
        action: "Action | None" = None,
    ) -> "HandoffContext":
        summary = None
        next_task = notes = None
        if action is not None:
            summary = f"{action.title} ({action.status.value})"
            next_task, notes = extract_handoff_notes(action.result)
        return cls(
            created_at=now,
            expires_at=now + HANDOFF_TTL,
            goal_id=goal.id if goal else (action.goal_id if action else None),
            goal_title=goal.title if goal else None,
            action_id=action.id if action else None,
            action_summary=summary,
            next_task=next_task,
            notes=notes,
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": to_iso(self.created_at),
            "expires_at": to_iso(self.expires_at),
            "goal_id": self.goal_id,
            "goal_title": self.goal_title,
            "action_id": self.action_id,
            "action_summary": self.action_summary,
            "next_task": self.next_task,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HandoffContext":
        created_at = from_iso(data["created_at"])
        expires_at = from_iso(data.get("expires_at")) or created_at + HANDOFF_TTL
        return cls(
            created_at=created_at,
            expires_at=expires_at,
            goal_id=data.get("goal_id"),
            goal_title=data.get("goal_title"),
            action_id=data.get("action_id"),
            action_summary=data.get("action_summary"),
            next_task=data.get("next_task"),
            notes=data.get("notes"),
        )
