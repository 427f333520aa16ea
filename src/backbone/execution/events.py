"""Execution events streamed by backends."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ExecutionEventType(Enum):
    START = "start"
    TEXT = "text"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    END = "end"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionEventType.END, ExecutionEventType.ERROR)


@dataclass(frozen=True, slots=True)
class ExecutionEvent:
    """One step of a backend run.

    Backends may leave action_id and timestamp unset; the executor stamps
    both before re-emitting the event.
    """

    type: ExecutionEventType
    payload: dict[str, Any] = field(default_factory=dict)
    action_id: str | None = None
    timestamp: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type.is_terminal

    def stamped(self, action_id: str, now: datetime) -> "ExecutionEvent":
        return replace(self, action_id=action_id, timestamp=self.timestamp or now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "action_id": self.action_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    # Constructors used by backends

    @classmethod
    def start(cls, **payload: Any) -> "ExecutionEvent":
        return cls(ExecutionEventType.START, payload)

    @classmethod
    def text(cls, text: str) -> "ExecutionEvent":
        return cls(ExecutionEventType.TEXT, {"text": text})

    @classmethod
    def tool_call(cls, name: str, arguments: dict[str, Any] | None = None) -> "ExecutionEvent":
        return cls(ExecutionEventType.TOOL_CALL, {"tool": name, "input": arguments or {}})

    @classmethod
    def tool_result(cls, result: Any) -> "ExecutionEvent":
        return cls(ExecutionEventType.TOOL_RESULT, {"result": result})

    @classmethod
    def end(cls, result: str | None = None, **payload: Any) -> "ExecutionEvent":
        return cls(ExecutionEventType.END, {"result": result, **payload})

    @classmethod
    def error(cls, message: str, rate_limited: bool = False, **payload: Any) -> "ExecutionEvent":
        return cls(
            ExecutionEventType.ERROR,
            {"error": message, "rate_limited": rate_limited, **payload},
        )
