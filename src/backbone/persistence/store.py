"""Persistence boundary for goals, actions and the handoff context.

The engine only defines the shape of a snapshot. JsonStateStore is the
reference on-disk encoding: one JSON document, written atomically.
"""

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from backbone.actions.models import Action, Fingerprint
from backbone.core.errors import ErrorCode, StoreError
from backbone.goals.models import Goal

if TYPE_CHECKING:
    from backbone.engine.handoff import HandoffContext

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass(slots=True)
class EngineSnapshot:
    goals: list[Goal] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    handoff: "HandoffContext | None" = None
    rejected: list[Fingerprint] = field(default_factory=list)
    """Rejected work; outlives the bounded action history."""

    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "goals": [g.to_dict() for g in self.goals],
            "actions": [a.to_dict() for a in self.actions],
            "handoff": self.handoff.to_dict() if self.handoff else None,
            "rejected": [list(key) for key in self.rejected],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineSnapshot":
        from backbone.engine.handoff import HandoffContext

        handoff = data.get("handoff")
        return cls(
            goals=[Goal.from_dict(g) for g in data.get("goals", [])],
            actions=[Action.from_dict(a) for a in data.get("actions", [])],
            handoff=HandoffContext.from_dict(handoff) if handoff else None,
            rejected=[_fingerprint(item) for item in data.get("rejected", [])],
            version=int(data.get("version", SNAPSHOT_VERSION)),
        )


def _fingerprint(item: Any) -> Fingerprint:
    goal_id, action_type, title = item
    return (goal_id, str(action_type), str(title))


@runtime_checkable
class StateStore(Protocol):
    """Externally supplied load()/save() pair.

    Both raise StoreError on failure.
    """

    def load(self) -> EngineSnapshot:
        ...

    def save(self, snapshot: EngineSnapshot) -> None:
        ...


class InMemoryStateStore:
    """Keeps the last saved snapshot as a dict (round-trips like a real store)."""

    def __init__(self, snapshot: EngineSnapshot | None = None):
        self._data: dict[str, Any] | None = snapshot.to_dict() if snapshot else None
        self.save_count = 0

    def load(self) -> EngineSnapshot:
        if self._data is None:
            return EngineSnapshot()
        return EngineSnapshot.from_dict(json.loads(json.dumps(self._data)))

    def save(self, snapshot: EngineSnapshot) -> None:
        self._data = snapshot.to_dict()
        self.save_count += 1


class JsonStateStore:
    """Snapshot in a single JSON file.

    A missing file loads as an empty snapshot; unreadable or invalid JSON is
    a StoreError (STORE_CORRUPT). Writes go to a temp file in the same
    directory and are moved into place with os.replace.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> EngineSnapshot:
        if not self.path.exists():
            logger.debug("No state file at %s; starting empty", self.path)
            return EngineSnapshot()

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(
                ErrorCode.STORE_READ_FAILED,
                context={"path": str(self.path), "detail": str(e)},
                cause=e,
            ) from e

        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return EngineSnapshot.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(
                ErrorCode.STORE_CORRUPT,
                context={"path": str(self.path), "detail": str(e)},
                cause=e,
            ) from e

    def save(self, snapshot: EngineSnapshot) -> None:
        content = json.dumps(snapshot.to_dict(), indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                suffix=".tmp",
                prefix=self.path.stem + "_",
                dir=self.path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, self.path)
            except OSError:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StoreError(
                ErrorCode.STORE_WRITE_FAILED,
                context={"path": str(self.path), "detail": str(e)},
                cause=e,
            ) from e
