"""Shared type aliases and small helpers."""

import secrets
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeAlias

JSONValue: TypeAlias = (
    dict[str, "JSONValue"] | list["JSONValue"] | str | int | float | bool | None
)

ProposalContext: TypeAlias = Mapping[str, Any]
"""Provider name → JSON-serializable value. Opaque to the engine."""


def new_id(prefix: str) -> str:
    """Create a sortable, collision-resistant identifier (e.g. ``action_1739…_9f2c1a``)."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
