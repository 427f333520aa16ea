"""Actions, the approval policy and the action queue."""

from backbone.actions.models import (
    Action,
    ActionStatus,
    ActionType,
    ExecutionPlan,
    ProposedAction,
    Recurrence,
)
from backbone.actions.policy import DEFAULT_AUTO_APPROVE, ApprovalPolicy
from backbone.actions.queue import ActionQueue

__all__ = [
    "DEFAULT_AUTO_APPROVE",
    "Action",
    "ActionQueue",
    "ActionStatus",
    "ActionType",
    "ApprovalPolicy",
    "ExecutionPlan",
    "ProposedAction",
    "Recurrence",
]
