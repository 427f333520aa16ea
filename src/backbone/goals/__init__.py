"""Goals and the Goal Manager."""

from backbone.goals.manager import GoalManager
from backbone.goals.models import Goal, GoalCategory, GoalPhase, GoalStatus

__all__ = ["Goal", "GoalCategory", "GoalManager", "GoalPhase", "GoalStatus"]
