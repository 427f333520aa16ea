"""Backbone - a personal autonomous-work engine.

Selects the highest-priority goal, asks a model for small actions that move
it forward, auto-approves the safe ones and runs them through pluggable
execution backends, resting adaptively between cycles.
"""

from backbone.actions import Action, ActionStatus, ActionType, ApprovalPolicy, ProposedAction
from backbone.core.errors import BackboneError, ErrorCode
from backbone.engine import (
    AutonomousLoopController,
    CycleOutcome,
    EngineConfig,
    EngineMode,
    HandoffContext,
)
from backbone.events import EventBus, ObserverEvent, WorkLog
from backbone.execution import ExecutionEvent, ExecutionEventType, ToolExecutor
from backbone.goals import Goal, GoalCategory, GoalManager, GoalStatus

__version__ = "0.1.0"

__all__ = [
    # Goals
    "Goal",
    "GoalCategory",
    "GoalManager",
    "GoalStatus",
    # Actions
    "Action",
    "ActionStatus",
    "ActionType",
    "ApprovalPolicy",
    "ProposedAction",
    # Engine
    "AutonomousLoopController",
    "CycleOutcome",
    "EngineConfig",
    "EngineMode",
    "HandoffContext",
    # Execution
    "ExecutionEvent",
    "ExecutionEventType",
    "ToolExecutor",
    # Events
    "EventBus",
    "ObserverEvent",
    "WorkLog",
    # Errors
    "BackboneError",
    "ErrorCode",
]
