"""Goal Manager — owns the goal set, picks what to work on next, tracks progress.

Goals are only mutated here. Persistence goes through the injected StateStore;
the manager itself never touches the filesystem.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from backbone.core.clock import Clock, SystemClock
from backbone.core.errors import invalid_transition, not_found
from backbone.events.bus import EventBus, ObserverEvent
from backbone.goals.models import Goal, GoalPhase, GoalStatus

if TYPE_CHECKING:
    from backbone.persistence.store import StateStore

logger = logging.getLogger(__name__)

# Progress at or above this counts as done (float drift from repeated deltas)
_COMPLETE_AT = 1.0 - 1e-9


class GoalManager:
    """Registry of goals with priority selection and monotonic progress.

    Example:
        >>> manager = GoalManager()
        >>> goal = manager.add_goal(Goal(title="Build emergency fund", priority=8))
        >>> manager.select_next_goal() is goal
        True
    """

    def __init__(
        self,
        store: "StateStore | None" = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self._goals: dict[str, Goal] = {}

    # =========================================================================
    # Loading
    # =========================================================================

    def initialize(self) -> int:
        """Load persisted goals from the store.

        Raises:
            StoreError: If the backing store cannot be read or is corrupt.

        Returns:
            Number of goals loaded
        """
        if self.store is None:
            return len(self._goals)
        snapshot = self.store.load()
        return self.load(snapshot.goals)

    def load(self, goals: Iterable[Goal]) -> int:
        """Replace the goal set (re-hydration from a snapshot)."""
        self._goals = {goal.id: goal for goal in goals}
        logger.debug("Loaded %d goals", len(self._goals))
        return len(self._goals)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def goals(self) -> list[Goal]:
        """All goals, including terminal ones."""
        return list(self._goals.values())

    def get_goal(self, goal_id: str) -> Goal | None:
        return self._goals.get(goal_id)

    def get_active_goals(self) -> list[Goal]:
        """Non-terminal goals (pending or active)."""
        return [g for g in self._goals.values() if not g.is_terminal]

    def peek_next_goal(self) -> Goal | None:
        """The goal select_next_goal() would pick, left unchanged."""
        candidates = self.get_active_goals()
        if not candidates:
            return None
        return min(candidates, key=_selection_key)

    def select_next_goal(self) -> Goal | None:
        """Pick the highest-priority non-terminal goal.

        Ties are broken by earliest created_at. A pending goal that gets
        selected becomes active.
        """
        goal = self.peek_next_goal()
        if goal is not None and goal.status == GoalStatus.PENDING:
            goal.status = GoalStatus.ACTIVE
            logger.info("Activated goal %s (%s)", goal.id, goal.title)
        return goal

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_goal(self, goal: Goal, auto_activate: bool = False) -> Goal:
        if goal.created_at is None:
            goal.created_at = self.clock.now()
        goal.progress = min(1.0, max(0.0, goal.progress))
        goal.advance_phase()
        if auto_activate and goal.status == GoalStatus.PENDING:
            goal.status = GoalStatus.ACTIVE
        self._goals[goal.id] = goal
        logger.info("Added goal %s (%s, priority %d)", goal.id, goal.title, goal.priority)
        return goal

    def update_progress(self, goal_id: str, delta: float) -> Goal:
        """Advance a goal's progress by delta, clamped to [0, 1].

        Negative deltas never lower progress; use reset_progress() for that.
        Terminal goals are returned unchanged. Reaching 1.0 completes the goal.
        """
        goal = self._require(goal_id)
        if goal.is_terminal:
            logger.debug("Ignoring progress update for %s goal %s", goal.status.value, goal_id)
            return goal

        previous = goal.progress
        goal.progress = min(1.0, max(previous, previous + delta))
        goal.advance_phase()

        if goal.progress >= _COMPLETE_AT:
            goal.progress = 1.0
            self._complete(goal)

        self.events.emit(
            ObserverEvent.GOAL_PROGRESS,
            {
                "goal_id": goal.id,
                "progress": goal.progress,
                "previous": previous,
                "phase": goal.phase.value,
                "status": goal.status.value,
            },
        )
        return goal

    def reset_progress(self, goal_id: str) -> Goal:
        """Explicitly return a goal to zero progress (the only way down)."""
        goal = self._require(goal_id)
        goal.progress = 0.0
        goal.phase = GoalPhase.DISCOVERY
        if goal.status == GoalStatus.COMPLETED:
            goal.status = GoalStatus.ACTIVE
            goal.completed_at = None
        logger.info("Reset progress for goal %s", goal_id)
        return goal

    def complete_goal(self, goal_id: str) -> Goal:
        goal = self._require(goal_id)
        if goal.status == GoalStatus.ABANDONED:
            raise invalid_transition("goal", goal_id, goal.status.value, GoalStatus.COMPLETED.value)
        if goal.status != GoalStatus.COMPLETED:
            goal.progress = 1.0
            goal.advance_phase()
            self._complete(goal)
        return goal

    def abandon_goal(self, goal_id: str) -> Goal:
        goal = self._require(goal_id)
        if goal.status == GoalStatus.COMPLETED:
            raise invalid_transition("goal", goal_id, goal.status.value, GoalStatus.ABANDONED.value)
        if goal.status != GoalStatus.ABANDONED:
            goal.status = GoalStatus.ABANDONED
            logger.info("Abandoned goal %s (%s)", goal.id, goal.title)
            self.events.emit(ObserverEvent.GOAL_ABANDONED, goal.to_dict())
        return goal

    def delete_goal(self, goal_id: str) -> Goal:
        goal = self._goals.pop(goal_id, None)
        if goal is None:
            raise not_found("goal", goal_id)
        logger.info("Deleted goal %s", goal_id)
        return goal

    # =========================================================================
    # Internal
    # =========================================================================

    def _require(self, goal_id: str) -> Goal:
        goal = self._goals.get(goal_id)
        if goal is None:
            raise not_found("goal", goal_id)
        return goal

    def _complete(self, goal: Goal) -> None:
        goal.status = GoalStatus.COMPLETED
        goal.completed_at = self.clock.now()
        logger.info("Goal %s completed", goal.id)


def _selection_key(goal: Goal) -> tuple[int, float]:
    created = goal.created_at.timestamp() if goal.created_at else float("inf")
    return (-goal.priority, created)
