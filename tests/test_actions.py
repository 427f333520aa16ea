"""Tests for actions, the approval policy and the action queue."""

from datetime import datetime, timedelta

import pytest

from backbone.actions import ActionQueue, ActionStatus, ActionType, ApprovalPolicy, Recurrence
from backbone.actions.policy import DEFAULT_AUTO_APPROVE, parse_action_types
from backbone.core.errors import ConfigError, ErrorCode, InvalidTransitionError, NotFoundError
from backbone.events.bus import ObserverEvent

from conftest import NOON, make_action, proposal


# =============================================================================
# Action lifecycle
# =============================================================================


class TestActionLifecycle:
    """proposed -> approved -> running -> completed/failed, plus rejection."""

    def test_happy_path(self, clock) -> None:
        action = make_action(requires_approval=True)
        assert action.status == ActionStatus.PROPOSED
        action.approve(clock.now())
        action.start(clock.now())
        action.complete(clock.now(), "summary")
        assert action.status == ActionStatus.COMPLETED
        assert action.result == "summary"
        assert action.is_terminal

    def test_failure_records_error(self, clock) -> None:
        action = make_action()
        action.approve(clock.now())
        action.start(clock.now())
        action.fail(clock.now(), "boom")
        assert action.status == ActionStatus.FAILED
        assert action.error == "boom"

    def test_reject_from_approved(self, clock) -> None:
        action = make_action()
        action.approve(clock.now())
        action.reject(clock.now(), "goal abandoned")
        assert action.status == ActionStatus.REJECTED
        assert action.error == "goal abandoned"

    @pytest.mark.parametrize("final", ["complete", "fail", "reject"])
    def test_terminal_states_are_final(self, clock, final: str) -> None:
        action = make_action()
        if final == "reject":
            action.reject(clock.now())
        else:
            action.approve(clock.now())
            action.start(clock.now())
            getattr(action, final)(clock.now(), "x")

        with pytest.raises(InvalidTransitionError):
            action.approve(clock.now())
        with pytest.raises(InvalidTransitionError):
            action.start(clock.now())

    def test_cannot_skip_approval(self, clock) -> None:
        action = make_action(requires_approval=True)
        with pytest.raises(InvalidTransitionError) as exc_info:
            action.start(clock.now())
        assert exc_info.value.code == ErrorCode.STATE_INVALID_TRANSITION
        assert action.status == ActionStatus.PROPOSED

    def test_requires_approval_is_frozen(self) -> None:
        action = make_action(requires_approval=True)
        with pytest.raises(AttributeError):
            action.requires_approval = False
        assert action.requires_approval is True

    def test_default_prompt_includes_rationale(self) -> None:
        action = make_action("Compare brokers", rationale="Fees matter")
        assert action.execution_plan.prompt == "Compare brokers\n\nFees matter"

    def test_explicit_prompt_and_backend(self) -> None:
        action = make_action("x", prompt="Do x carefully", backend_id="model")
        assert action.execution_plan.prompt == "Do x carefully"
        assert action.execution_plan.backend_id == "model"

    def test_dict_round_trip(self, clock) -> None:
        action = make_action(requires_approval=True, goal_id="goal_1")
        action.approve(clock.now())
        restored = type(action).from_dict(action.to_dict())
        assert restored.to_dict() == action.to_dict()

    def test_unknown_type_parses_as_execute(self) -> None:
        assert ActionType.parse("teleport") == ActionType.EXECUTE
        assert ActionType.parse(" Research ") == ActionType.RESEARCH


# =============================================================================
# Approval policy
# =============================================================================


class TestApprovalPolicy:
    """Auto-approve sets."""

    def test_default_set(self) -> None:
        policy = ApprovalPolicy()
        assert policy.auto_approve_types == DEFAULT_AUTO_APPROVE
        for action_type in (ActionType.RESEARCH, ActionType.ANALYZE, ActionType.PLAN):
            assert not policy.requires_approval(action_type)
        for action_type in (ActionType.EXECUTE, ActionType.COMMUNICATE, ActionType.BROWSER):
            assert policy.requires_approval(action_type)

    def test_accepts_actions_and_proposals(self) -> None:
        policy = ApprovalPolicy()
        assert policy.requires_approval(proposal("Email landlord", ActionType.COMMUNICATE))
        assert not policy.requires_approval(make_action())

    def test_from_names(self) -> None:
        policy = ApprovalPolicy.from_names(["execute", "Health"])
        assert policy.names() == ["execute", "health"]

    def test_unknown_name_is_rejected(self) -> None:
        with pytest.raises(ConfigError):
            parse_action_types(["research", "everything"])

    def test_empty_set_requires_approval_for_all(self) -> None:
        policy = ApprovalPolicy(frozenset())
        assert all(policy.requires_approval(t) for t in ActionType)


# =============================================================================
# Action queue
# =============================================================================


@pytest.fixture
def queue(clock, events) -> ActionQueue:
    return ActionQueue(clock=clock, events=events)


class TestActionQueue:
    """Intake, approval and the single running slot."""

    def test_auto_approved_skip_pending(self, queue: ActionQueue) -> None:
        action = queue.submit(proposal("Research funds"), ApprovalPolicy(), goal_id="g1")
        assert action.status == ActionStatus.APPROVED
        assert action.approved_at == NOON
        assert action.goal_id == "g1"
        assert queue.pending == []
        assert queue.approved == [action]

    def test_gated_action_waits(self, queue: ActionQueue) -> None:
        action = queue.submit(proposal("Open account", ActionType.EXECUTE), ApprovalPolicy())
        assert action.requires_approval
        assert queue.pending == [action]
        assert queue.next_approved() is None

    def test_duplicate_open_proposal_dropped(self, queue: ActionQueue) -> None:
        policy = ApprovalPolicy()
        first = queue.submit(proposal("Open account", ActionType.EXECUTE), policy, goal_id="g1")
        again = queue.submit(proposal("  open   ACCOUNT ", ActionType.EXECUTE), policy, goal_id="g1")
        assert first is not None
        assert again is None
        assert len(queue.pending) == 1

    def test_rejected_work_is_not_reproposed(self, queue: ActionQueue) -> None:
        policy = ApprovalPolicy()
        action = queue.submit(proposal("Open account", ActionType.EXECUTE), policy, goal_id="g1")
        queue.reject(action.id)
        assert queue.submit(proposal("Open account", ActionType.EXECUTE), policy, goal_id="g1") is None
        # Same title for another goal is different work
        assert queue.submit(proposal("Open account", ActionType.EXECUTE), policy, goal_id="g2") is not None

    def test_pending_sorted_by_priority_then_age(self, queue: ActionQueue, clock) -> None:
        policy = ApprovalPolicy()
        low = queue.submit(proposal("low", ActionType.EXECUTE, priority=2), policy)
        clock.advance(seconds=1)
        high = queue.submit(proposal("high", ActionType.EXECUTE, priority=9), policy)
        clock.advance(seconds=1)
        high_later = queue.submit(proposal("high later", ActionType.EXECUTE, priority=9), policy)
        assert queue.pending == [high, high_later, low]

    def test_approve_all_in_priority_order(self, queue: ActionQueue, events) -> None:
        seen = []
        events.on(ObserverEvent.ACTION_APPROVED, lambda a: seen.append(a["title"]))
        policy = ApprovalPolicy()
        queue.submit(proposal("b", ActionType.EXECUTE, priority=3), policy)
        queue.submit(proposal("a", ActionType.EXECUTE, priority=8), policy)
        approved = queue.approve_all()
        assert [a.title for a in approved] == ["a", "b"]
        assert seen == ["a", "b"]
        assert queue.pending == []

    def test_reject_emits_and_retires(self, queue: ActionQueue, events) -> None:
        seen = []
        events.on(ObserverEvent.ACTION_REJECTED, seen.append)
        action = queue.submit(proposal("x", ActionType.EXECUTE), ApprovalPolicy())
        queue.reject(action.id, "not now")
        assert seen[0]["id"] == action.id
        assert queue.history == [action]
        assert queue.get(action.id) is action

    def test_approving_twice_fails(self, queue: ActionQueue) -> None:
        action = queue.submit(proposal("x", ActionType.EXECUTE), ApprovalPolicy())
        queue.approve(action.id)
        with pytest.raises(InvalidTransitionError):
            queue.approve(action.id)

    def test_unknown_id(self, queue: ActionQueue) -> None:
        with pytest.raises(NotFoundError):
            queue.approve("action_nope")

    def test_reject_for_goal_withdraws_unstarted(self, queue: ActionQueue) -> None:
        policy = ApprovalPolicy()
        pending = queue.submit(proposal("p", ActionType.EXECUTE), policy, goal_id="g1")
        approved = queue.submit(proposal("a"), policy, goal_id="g1")
        other = queue.submit(proposal("o"), policy, goal_id="g2")
        withdrawn = queue.reject_for_goal("g1", "goal abandoned")
        assert {a.id for a in withdrawn} == {pending.id, approved.id}
        assert all(a.status == ActionStatus.REJECTED for a in withdrawn)
        assert queue.approved == [other]

    def test_only_one_action_runs(self, queue: ActionQueue) -> None:
        policy = ApprovalPolicy()
        first = queue.submit(proposal("first"), policy)
        second = queue.submit(proposal("second"), policy)
        queue.begin(first)
        with pytest.raises(InvalidTransitionError) as exc_info:
            queue.begin(second)
        assert exc_info.value.code == ErrorCode.STATE_CONCURRENT_LIMIT
        assert queue.running is first

    def test_finish_requires_terminal(self, queue: ActionQueue, clock) -> None:
        action = queue.submit(proposal("x"), ApprovalPolicy())
        queue.begin(action)
        with pytest.raises(InvalidTransitionError):
            queue.finish(action)
        action.complete(clock.now(), "ok")
        queue.finish(action)
        assert queue.running is None
        assert queue.history == [action]

    def test_load_restores_rejections(self, queue: ActionQueue, clock, events) -> None:
        policy = ApprovalPolicy()
        action = queue.submit(proposal("x", ActionType.EXECUTE), policy, goal_id="g1")
        queue.reject(action.id)
        snapshot = queue.snapshot()

        restored = ActionQueue(clock=clock, events=events)
        restored.load(snapshot)
        assert restored.submit(proposal("x", ActionType.EXECUTE), policy, goal_id="g1") is None

    def test_rejections_outlive_bounded_history(self, clock, events) -> None:
        queue = ActionQueue(clock=clock, events=events, history_limit=3)
        policy = ApprovalPolicy()
        rejected = queue.submit(proposal("Send email", ActionType.EXECUTE), policy)
        queue.reject(rejected.id)
        for i in range(5):
            action = queue.submit(proposal(f"Research {i}"), policy)
            queue.begin(action)
            action.complete(clock.now(), "ok")
            queue.finish(action)
        assert rejected not in queue.history

        restored = ActionQueue(clock=clock, events=events)
        restored.load(queue.snapshot(), rejected=queue.rejected_fingerprints)

        assert restored.submit(proposal("Send email", ActionType.EXECUTE), policy) is None


# =============================================================================
# Scheduling
# =============================================================================


def _run(queue: ActionQueue, action, clock, fail: bool = False) -> None:
    queue.begin(action)
    if fail:
        action.fail(clock.now(), "boom")
    else:
        action.complete(clock.now(), "ok")
    queue.finish(action)


class TestRecurrence:
    """Next run times."""

    @pytest.mark.parametrize(
        ("recurrence", "expected"),
        [
            (Recurrence.HOURLY, NOON + timedelta(hours=1)),
            (Recurrence.DAILY, NOON + timedelta(days=1)),
            (Recurrence.WEEKLY, NOON + timedelta(days=7)),
        ],
    )
    def test_fixed_intervals(self, recurrence: Recurrence, expected: datetime) -> None:
        assert recurrence.next_after(NOON) == expected

    def test_monthly_clamps_to_month_end(self) -> None:
        assert Recurrence.MONTHLY.next_after(datetime(2026, 1, 31, 9, 0)) == datetime(2026, 2, 28, 9, 0)
        assert Recurrence.MONTHLY.next_after(datetime(2026, 12, 15, 9, 0)) == datetime(2027, 1, 15, 9, 0)

    def test_scheduling_fields_round_trip(self, clock) -> None:
        action = make_action()
        action.scheduled_for = NOON + timedelta(hours=2)
        action.depends_on = ["action_1"]
        action.recurrence = Recurrence.WEEKLY
        restored = type(action).from_dict(action.to_dict())
        assert restored.scheduled_for == action.scheduled_for
        assert restored.depends_on == ["action_1"]
        assert restored.recurrence == Recurrence.WEEKLY


class TestScheduledActions:
    """Due times, dependencies and recurring runs in the queue."""

    def test_not_ready_before_due(self, queue: ActionQueue, clock) -> None:
        action = queue.submit(proposal("Weekly review"), ApprovalPolicy(), scheduled_for=NOON + timedelta(hours=1))
        assert action.status == ActionStatus.APPROVED
        assert queue.next_approved() is None
        assert queue.waiting == [action]
        assert queue.next_scheduled() is action

        clock.advance(hours=1)
        assert queue.next_approved() is action
        assert queue.waiting == []

    def test_dependency_holds_back_until_finished(self, queue: ActionQueue, clock) -> None:
        policy = ApprovalPolicy()
        first = queue.submit(proposal("Gather statements", priority=2), policy)
        second = queue.submit(proposal("Summarize spending", priority=9), policy, depends_on=[first.id])

        assert queue.next_approved() is first
        _run(queue, first, clock)
        assert queue.next_approved() is second

    def test_unknown_dependency(self, queue: ActionQueue) -> None:
        with pytest.raises(NotFoundError):
            queue.submit(proposal("x"), ApprovalPolicy(), depends_on=["action_missing"])

    def test_failed_dependency_withdraws_dependents(self, queue: ActionQueue, clock, events) -> None:
        seen = []
        events.on(ObserverEvent.ACTION_REJECTED, lambda a: seen.append(a["title"]))
        policy = ApprovalPolicy()
        first = queue.submit(proposal("first"), policy)
        second = queue.submit(proposal("second"), policy, depends_on=[first.id])
        third = queue.submit(proposal("third"), policy, depends_on=[second.id])

        _run(queue, first, clock, fail=True)

        assert second.status == ActionStatus.REJECTED
        assert third.status == ActionStatus.REJECTED
        assert second.error == f"dependency {first.id} failed"
        assert seen == ["second", "third"]
        assert queue.approved == []
        # Withdrawn work may be proposed again
        assert queue.submit(proposal("second"), policy) is not None

        with pytest.raises(InvalidTransitionError) as exc_info:
            queue.submit(proposal("again"), policy, depends_on=[first.id])
        assert exc_info.value.code == ErrorCode.STATE_DEPENDENCY_FAILED

    def test_rejecting_a_dependency_withdraws_dependents(self, queue: ActionQueue) -> None:
        policy = ApprovalPolicy()
        gated = queue.submit(proposal("Open account", ActionType.EXECUTE), policy, goal_id="g1")
        follow_up = queue.submit(proposal("Fund account"), policy, goal_id="g1", depends_on=[gated.id])

        withdrawn = queue.reject_for_goal("g1", "goal abandoned")

        assert withdrawn == [gated]
        assert follow_up.status == ActionStatus.REJECTED

    def test_recurring_action_queues_next_run(self, queue: ActionQueue, clock, events) -> None:
        scheduled = []
        events.on(ObserverEvent.ACTION_SCHEDULED, scheduled.append)
        action = queue.submit(proposal("Check balance"), ApprovalPolicy(), recurrence=Recurrence.DAILY)

        _run(queue, action, clock)

        following = queue.next_scheduled()
        assert following is not None
        assert following.id != action.id
        assert following.status == ActionStatus.APPROVED
        assert following.scheduled_for == NOON + timedelta(days=1)
        assert following.recurrence == Recurrence.DAILY
        assert scheduled[0]["id"] == following.id
        assert queue.next_approved() is None

    def test_recurrence_survives_failure_but_not_rejection(self, queue: ActionQueue, clock) -> None:
        policy = ApprovalPolicy()
        failing = queue.submit(proposal("Sync calendar"), policy, recurrence=Recurrence.HOURLY)
        _run(queue, failing, clock, fail=True)
        assert [a.title for a in queue.approved] == ["Sync calendar"]

        rejected = queue.submit(proposal("Post update", ActionType.EXECUTE), policy, recurrence=Recurrence.DAILY)
        queue.reject(rejected.id)
        assert queue.pending == []
        assert [a.title for a in queue.approved] == ["Sync calendar"]
