"""The autonomous loop: controller, scheduling, handoff and context."""

from backbone.engine.config import EngineConfig
from backbone.engine.context import ContextProviders
from backbone.engine.controller import AutonomousLoopController
from backbone.engine.handoff import HANDOFF_TTL, HandoffContext, extract_handoff_notes
from backbone.engine.schedule import CycleOutcome, QuietHours, QuietHoursSkip, RestPolicy
from backbone.engine.state import EngineMode, EngineState, RestLevel

__all__ = [
    "HANDOFF_TTL",
    "AutonomousLoopController",
    "ContextProviders",
    "CycleOutcome",
    "EngineConfig",
    "EngineMode",
    "EngineState",
    "HandoffContext",
    "QuietHours",
    "QuietHoursSkip",
    "RestLevel",
    "RestPolicy",
    "extract_handoff_notes",
]
