"""ActionQueue — tracks every action from proposal to its terminal state.

Holds the pending-approval queue, approved actions waiting to run, the single
running slot, and a bounded history of finished actions. Fingerprints of
rejected work are kept separately and never evicted.

Approved actions run only when ready: due, and with every dependency
finished. A dependency that fails or is rejected withdraws its dependents.
A recurring action queues its next run, already approved, when it finishes.
"""

import logging
from collections import deque
from collections.abc import Iterable
from datetime import datetime

from backbone.actions.models import (
    Action,
    ActionStatus,
    Fingerprint,
    ProposedAction,
    Recurrence,
    fingerprint,
)
from backbone.actions.policy import ApprovalPolicy
from backbone.core.clock import Clock, SystemClock
from backbone.core.errors import ErrorCode, InvalidTransitionError, not_found
from backbone.events.bus import EventBus, ObserverEvent

logger = logging.getLogger(__name__)


def _queue_order(action: Action) -> tuple[int, float]:
    created = action.created_at.timestamp() if action.created_at else 0.0
    return (-action.priority, created)


class ActionQueue:
    """Approval-gated action store with a concurrency cap of one."""

    def __init__(
        self,
        clock: Clock | None = None,
        events: EventBus | None = None,
        history_limit: int = 50,
    ):
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self._open: dict[str, Action] = {}
        self._history: deque[Action] = deque(maxlen=history_limit)
        self._rejected: dict[Fingerprint, None] = {}

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def pending(self) -> list[Action]:
        """Actions waiting for approval, highest priority first."""
        return sorted(
            (a for a in self._open.values() if a.status == ActionStatus.PROPOSED),
            key=_queue_order,
        )

    @property
    def approved(self) -> list[Action]:
        """Approved actions not yet started, highest priority first."""
        return sorted(
            (a for a in self._open.values() if a.status == ActionStatus.APPROVED),
            key=_queue_order,
        )

    @property
    def waiting(self) -> list[Action]:
        """Approved actions that are not due yet or wait on a dependency."""
        now = self.clock.now()
        return [a for a in self.approved if not self.is_ready(a, now)]

    @property
    def running(self) -> Action | None:
        for action in self._open.values():
            if action.status == ActionStatus.RUNNING:
                return action
        return None

    @property
    def rejected_fingerprints(self) -> list[Fingerprint]:
        """Identities of every rejected action, oldest first."""
        return list(self._rejected)

    @property
    def history(self) -> list[Action]:
        """Finished actions, oldest first."""
        return list(self._history)

    def get(self, action_id: str) -> Action | None:
        if action_id in self._open:
            return self._open[action_id]
        for action in self._history:
            if action.id == action_id:
                return action
        return None

    def is_ready(self, action: Action, now: datetime) -> bool:
        return action.is_due(now) and not any(dep in self._open for dep in action.depends_on)

    def next_approved(self) -> Action | None:
        """Highest-priority approved action that is ready to run."""
        now = self.clock.now()
        for action in self.approved:
            if self.is_ready(action, now):
                return action
        return None

    def next_scheduled(self) -> Action | None:
        """The approved action with the earliest due time."""
        scheduled = [a for a in self.approved if a.scheduled_for is not None]
        return min(scheduled, key=lambda a: a.scheduled_for, default=None)

    # =========================================================================
    # Proposal intake
    # =========================================================================

    def submit(
        self,
        proposal: ProposedAction,
        policy: ApprovalPolicy,
        goal_id: str | None = None,
        *,
        scheduled_for: datetime | None = None,
        depends_on: Iterable[str] = (),
        recurrence: Recurrence | None = None,
    ) -> Action | None:
        """Track a proposal, auto-approving it when the policy allows.

        Raises:
            NotFoundError: If a dependency id is unknown.
            InvalidTransitionError: If a dependency already failed or was
                rejected.

        Returns:
            The new action, or None when the same work was already rejected
            or is already queued.
        """
        key = fingerprint(proposal.goal_id or goal_id, proposal.type, proposal.title)
        if key in self._rejected:
            logger.info("Dropping previously rejected proposal: %s", proposal.title)
            return None
        if any(a.fingerprint() == key for a in self._open.values()):
            logger.debug("Dropping duplicate proposal: %s", proposal.title)
            return None

        depends_on = list(depends_on)
        for dep_id in depends_on:
            self._check_dependency(dep_id)

        now = self.clock.now()
        action = Action.from_proposal(
            proposal,
            requires_approval=policy.requires_approval(proposal),
            created_at=now,
            goal_id=goal_id,
        )
        action.scheduled_for = scheduled_for
        action.depends_on = depends_on
        action.recurrence = recurrence
        self._open[action.id] = action

        if not action.requires_approval:
            action.approve(now)
            logger.info("Auto-approved %s action: %s", action.type.value, action.title)
        else:
            logger.info("Queued %s action for approval: %s", action.type.value, action.title)
        return action

    # =========================================================================
    # Approval API
    # =========================================================================

    def approve(self, action_id: str) -> Action:
        action = self._require(action_id)
        action.approve(self.clock.now())
        logger.info("Approved action %s (%s)", action.id, action.title)
        self.events.emit(ObserverEvent.ACTION_APPROVED, action.to_dict())
        return action

    def reject(self, action_id: str, reason: str | None = None) -> Action:
        action = self._require(action_id)
        self._reject(action, reason)
        self._rejected[action.fingerprint()] = None
        return action

    def approve_all(self) -> list[Action]:
        """Approve every pending action in priority order."""
        return [self.approve(action.id) for action in self.pending]

    def reject_for_goal(self, goal_id: str, reason: str) -> list[Action]:
        """Withdraw every not-yet-started action linked to a goal."""
        candidates = [a for a in self.pending + self.approved if a.goal_id == goal_id]
        rejected = []
        for action in candidates:
            # Rejecting one may already have withdrawn its dependents
            if action.id in self._open:
                rejected.append(self.reject(action.id, reason))
        return rejected

    # =========================================================================
    # Execution slot
    # =========================================================================

    def begin(self, action: Action) -> None:
        """Move an approved action into the single running slot."""
        current = self.running
        if current is not None and current.id != action.id:
            raise InvalidTransitionError(
                ErrorCode.STATE_CONCURRENT_LIMIT,
                context={"id": action.id, "running": current.id},
            )
        action.start(self.clock.now())

    def finish(self, action: Action) -> None:
        """Retire an action that reached completed or failed."""
        if not action.is_terminal:
            raise InvalidTransitionError(
                context={
                    "kind": "action",
                    "id": action.id,
                    "current": action.status.value,
                    "target": "history",
                }
            )
        if not self._retire(action):
            return
        if action.status == ActionStatus.FAILED:
            self._withdraw_dependents(action)

        following = action.next_occurrence()
        if following is not None:
            following.approve(self.clock.now())
            self._open[following.id] = following
            logger.info(
                "Next %s run of %s at %s",
                following.recurrence.value,
                following.title,
                following.scheduled_for.isoformat(),
            )
            self.events.emit(ObserverEvent.ACTION_SCHEDULED, following.to_dict())

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self, actions: Iterable[Action], rejected: Iterable[Fingerprint] = ()) -> int:
        self._open.clear()
        self._history.clear()
        self._rejected = dict.fromkeys(rejected)
        for action in actions:
            if action.is_terminal:
                self._history.append(action)
                if action.status == ActionStatus.REJECTED:
                    self._rejected[action.fingerprint()] = None
            else:
                self._open[action.id] = action
        return len(self._open) + len(self._history)

    def snapshot(self) -> list[Action]:
        return list(self._history) + list(self._open.values())

    # =========================================================================
    # Internal
    # =========================================================================

    def _require(self, action_id: str) -> Action:
        action = self.get(action_id)
        if action is None:
            raise not_found("action", action_id)
        return action

    def _check_dependency(self, dep_id: str) -> None:
        dependency = self.get(dep_id)
        if dependency is None:
            raise not_found("action", dep_id)
        if dependency.is_terminal and dependency.status != ActionStatus.COMPLETED:
            raise InvalidTransitionError(
                ErrorCode.STATE_DEPENDENCY_FAILED,
                context={"dependency": dep_id, "status": dependency.status.value},
            )

    def _reject(self, action: Action, reason: str | None) -> None:
        action.reject(self.clock.now(), reason)
        logger.info("Rejected action %s (%s)", action.id, action.title)
        self.events.emit(ObserverEvent.ACTION_REJECTED, action.to_dict())
        if self._retire(action):
            self._withdraw_dependents(action)

    def _withdraw_dependents(self, action: Action) -> None:
        # Withdrawn, not rejected: the same work may be proposed again later
        reason = f"dependency {action.id} {action.status.value}"
        for dependent in [a for a in self._open.values() if action.id in a.depends_on]:
            if dependent.id in self._open:
                self._reject(dependent, reason)

    def _retire(self, action: Action) -> bool:
        if self._open.pop(action.id, None) is None:
            return False
        self._history.append(action)
        return True
