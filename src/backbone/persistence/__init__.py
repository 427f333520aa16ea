"""Persistence boundary and reference stores."""

from backbone.persistence.store import (
    EngineSnapshot,
    InMemoryStateStore,
    JsonStateStore,
    StateStore,
)

__all__ = ["EngineSnapshot", "InMemoryStateStore", "JsonStateStore", "StateStore"]
