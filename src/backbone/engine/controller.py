"""Autonomous Loop Controller — the engine's state machine.

One cycle:

    IDLE ──► SELECTING ──► PROPOSING ──► EXECUTING ──► RESTING ──► IDLE
      └──────────────── quiet hours ─────────────────────┘

- SELECTING: withdraw work of abandoned goals, read the handoff, pick a goal.
- PROPOSING: gather context, ask the proposer, run proposals through the
  approval policy. Actions that need approval wait in the queue; the loop
  never blocks on them.
- EXECUTING: run approved actions one at a time on the Tool Executor.
- RESTING: adaptive delay (normal / rate limited / quiet hours).

Every error except a StoreError during initialize() is caught at the cycle
boundary and becomes a work log entry plus a rest delay.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from backbone.actions.models import Action, ActionType, ProposedAction, Recurrence
from backbone.actions.policy import parse_action_types
from backbone.actions.queue import ActionQueue
from backbone.core.clock import Clock
from backbone.core.errors import (
    BackboneError,
    ErrorCode,
    ExecutionError,
    ProviderError,
    StoreError,
    is_rate_limit_message,
)
from backbone.core.types import to_iso
from backbone.engine.config import EngineConfig
from backbone.engine.context import ContextProviders
from backbone.engine.handoff import HandoffContext
from backbone.engine.schedule import CycleOutcome, QuietHours
from backbone.engine.state import EngineMode, EngineState
from backbone.events.bus import EventBus, ObserverEvent
from backbone.events.worklog import EntryStatus, WorkLog
from backbone.execution.events import ExecutionEvent, ExecutionEventType
from backbone.execution.executor import ExecutionOutcome, ToolExecutor
from backbone.goals.manager import GoalManager
from backbone.goals.models import Goal, GoalStatus
from backbone.persistence.store import EngineSnapshot, InMemoryStateStore, StateStore
from backbone.proposer.protocol import ActionProposer

logger = logging.getLogger(__name__)

_UNSET: Any = object()

T = TypeVar("T", Goal, Action)


class AutonomousLoopController:
    """Drives goal selection, proposal, approval and execution in cycles.

    Example:
        >>> controller = AutonomousLoopController(goals, proposer, executor, store)
        >>> controller.start_autonomous_loop()
        >>> ...
        >>> controller.stop()
        >>> await controller.join()
    """

    def __init__(
        self,
        goal_manager: GoalManager,
        proposer: ActionProposer,
        executor: ToolExecutor,
        store: StateStore | None = None,
        *,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        work_log: WorkLog | None = None,
        events: EventBus | None = None,
        context_providers: ContextProviders | None = None,
        queue: ActionQueue | None = None,
    ):
        self.goal_manager = goal_manager
        self.proposer = proposer
        self.executor = executor
        self.store = store or InMemoryStateStore()
        self.config = config or EngineConfig()
        self.clock = clock or goal_manager.clock
        self.events = events or goal_manager.events
        self.work_log = work_log or WorkLog(clock=self.clock)
        self.context_providers = context_providers or ContextProviders()
        self.queue = queue or ActionQueue(clock=self.clock, events=self.events)

        self.state = EngineState(cycle_interval_ms=self.config.cycle_interval_ms)
        self._handoff: HandoffContext | None = None
        self._initialized = False
        self._last_error: Exception | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()

    # =========================================================================
    # Startup
    # =========================================================================

    def initialize(self) -> None:
        """Load persisted goals, actions and the handoff.

        Raises:
            StoreError: If the store cannot be read. The engine will not start.
        """
        try:
            snapshot = self.store.load()
        except StoreError as e:
            self._last_error = e
            logger.error("Cannot start engine: %s", e)
            self.work_log.write("engine", f"State store unavailable: {e.message}", EntryStatus.ERROR, e.to_dict())
            raise

        # Objects created before initialize() stay live; callers hold them
        self.goal_manager.load(_merge(snapshot.goals, self.goal_manager.goals))
        self.queue.load(
            _merge(snapshot.actions, self.queue.snapshot()),
            rejected=[*snapshot.rejected, *self.queue.rejected_fingerprints],
        )
        self._handoff = snapshot.handoff

        # A running action in the snapshot means the process died mid-flight
        interrupted = self.queue.running
        if interrupted is not None:
            interrupted.fail(self.clock.now(), "interrupted")
            self.queue.finish(interrupted)
            self.work_log.write(
                "engine",
                f"Marked interrupted action as failed: {interrupted.title}",
                EntryStatus.WARNING,
            )

        self._initialized = True
        logger.info(
            "Engine initialized: %d goals, %d pending actions",
            len(self.goal_manager.goals),
            len(self.queue.pending),
        )

    # =========================================================================
    # Control API
    # =========================================================================

    def start_autonomous_loop(self) -> asyncio.Task:
        """Start cycling in the background (first cycle starts immediately).

        Raises:
            StoreError: If initialization fails.
        """
        if self._task is not None and not self._task.done():
            return self._task
        if not self._initialized:
            self.initialize()

        self._stop_event.clear()
        self._wake_event.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="backbone-loop"
        )
        self.work_log.write("engine", "Autonomous loop started", EntryStatus.STARTED)
        return self._task

    def stop(self) -> None:
        """Stop after the current step.

        A pending rest is cancelled at once. An in-flight action runs to its
        backend's own timeout; no further actions start.
        """
        if not self._stop_event.is_set():
            self._stop_event.set()
            self.work_log.write("engine", "Stop requested")

    async def join(self) -> None:
        """Wait for the loop task to finish after stop()."""
        if self._task is not None:
            await self._task

    def wake(self) -> None:
        """End the current rest early."""
        self._wake_event.set()

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def last_error(self) -> Exception | None:
        return self._last_error

    def update_config(
        self,
        auto_approve_types: Iterable[str | ActionType] | None = None,
        cycle_interval_ms: int | None = None,
        quiet_hours_window: QuietHours | str | None = _UNSET,
    ) -> EngineConfig:
        """Change runtime settings; they apply from the next decision on.

        Pass ``quiet_hours_window=None`` to disable quiet hours.
        """
        changes: dict[str, Any] = {}
        if auto_approve_types is not None:
            changes["auto_approve_types"] = parse_action_types(auto_approve_types)
        if cycle_interval_ms is not None:
            changes["cycle_interval_ms"] = int(cycle_interval_ms)
            self.state.cycle_interval_ms = int(cycle_interval_ms)
        if quiet_hours_window is not _UNSET:
            if isinstance(quiet_hours_window, str):
                quiet_hours_window = QuietHours.parse(quiet_hours_window)
            changes["quiet_hours"] = quiet_hours_window

        self.config = self.config.with_changes(**changes)
        logger.info("Engine config updated: %s", ", ".join(changes) or "no changes")
        return self.config

    # =========================================================================
    # Approval API
    # =========================================================================

    def approve_action(self, action_id: str) -> Action:
        """Approve a pending action; it runs on the next cycle."""
        action = self.queue.approve(action_id)
        self.work_log.write("approval", f"Approved: {action.title}", EntryStatus.SUCCESS)
        self._persist()
        return action

    def reject_action(self, action_id: str) -> Action:
        action = self.queue.reject(action_id)
        self.work_log.write("approval", f"Rejected: {action.title}", EntryStatus.INFO)
        self._persist()
        return action

    def approve_all(self) -> list[Action]:
        approved = self.queue.approve_all()
        if approved:
            self.work_log.write("approval", f"Approved {len(approved)} pending actions", EntryStatus.SUCCESS)
            self._persist()
        return approved

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule_action(
        self,
        proposal: ProposedAction,
        *,
        at: datetime | None = None,
        depends_on: Iterable[str] = (),
        recurrence: Recurrence | None = None,
    ) -> Action | None:
        """Queue an action directly, optionally not before a given time.

        The approval policy applies as for proposals. Naive times are local.

        Returns:
            The action, or None when the same work was rejected or is queued.
        """
        if at is not None and at.tzinfo is None:
            at = at.astimezone()
        action = self.queue.submit(
            proposal,
            self.config.approval_policy,
            scheduled_for=at,
            depends_on=depends_on,
            recurrence=recurrence,
        )
        if action is None:
            return None

        when = f" for {at:%Y-%m-%d %H:%M}" if at else ""
        self.work_log.write("scheduler", f"Scheduled: {action.title}{when}")
        self.events.emit(ObserverEvent.ACTION_SCHEDULED, action.to_dict())
        self._persist()
        return action

    def schedule_action_sequence(
        self,
        proposals: Iterable[ProposedAction],
        *,
        at: datetime | None = None,
    ) -> list[Action]:
        """Queue actions that run strictly one after another."""
        scheduled: list[Action] = []
        for proposal in proposals:
            previous = scheduled[-1] if scheduled else None
            action = self.schedule_action(
                proposal,
                at=None if previous else at,
                depends_on=[previous.id] if previous else (),
            )
            if action is not None:
                scheduled.append(action)
        return scheduled

    def schedule_recurring_action(
        self,
        proposal: ProposedAction,
        recurrence: Recurrence,
        *,
        at: datetime | None = None,
    ) -> Action | None:
        """Queue an action that queues its next run each time it finishes."""
        return self.schedule_action(proposal, at=at, recurrence=recurrence)

    def next_scheduled_action(self) -> Action | None:
        return self.queue.next_scheduled()

    # =========================================================================
    # Goals
    # =========================================================================

    def add_goal(self, goal: Goal, auto_activate: bool = False) -> Goal:
        goal = self.goal_manager.add_goal(goal, auto_activate)
        self.work_log.write("goals", f"Added goal: {goal.title}")
        self._persist()
        return goal

    def abandon_goal(self, goal_id: str) -> list[Action]:
        """Abandon a goal and withdraw its actions that have not started.

        Returns:
            The actions that were rejected.
        """
        goal = self.goal_manager.abandon_goal(goal_id)
        withdrawn = self.queue.reject_for_goal(goal_id, "goal abandoned")
        self.work_log.write(
            "goals",
            f"Abandoned goal: {goal.title} ({len(withdrawn)} actions withdrawn)",
            EntryStatus.WARNING,
        )
        self._persist()
        return withdrawn

    def reset_goal(self, goal_id: str) -> Goal:
        """Return a goal to zero progress."""
        goal = self.goal_manager.reset_progress(goal_id)
        self.work_log.write("goals", f"Reset progress: {goal.title}")
        self._persist()
        return goal

    # =========================================================================
    # Loop
    # =========================================================================

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                await self.run_cycle()
                if self._stop_event.is_set():
                    break
                await self._rest()
        finally:
            self._set_mode(EngineMode.IDLE)
            self.work_log.write("engine", "Autonomous loop stopped")
            logger.info("Autonomous loop stopped after %d cycles", self.state.cycle_count)

    async def _rest(self) -> None:
        delay = self._rest_delay_ms() / 1000
        sleeper = asyncio.ensure_future(self.clock.sleep(delay))
        waiters = {
            sleeper,
            asyncio.ensure_future(self._wake_event.wait()),
            asyncio.ensure_future(self._stop_event.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        if self._wake_event.is_set():
            self._wake_event.clear()
            self.work_log.write("engine", "Woken early from rest")
        if not self._stop_event.is_set():
            self._set_mode(EngineMode.IDLE)

    def _rest_delay_ms(self) -> float:
        if self.state.next_cycle_at is None:
            return 0.0
        remaining = self.state.next_cycle_at - self.clock.now()
        return max(0.0, remaining.total_seconds() * 1000)

    async def run_cycle(self) -> CycleOutcome:
        """Run exactly one cycle, ending in RESTING with next_cycle_at set."""
        if not self._initialized:
            self.initialize()

        now = self.clock.now()
        self.state.last_cycle_at = now
        self.state.cycle_count += 1
        reason = None

        try:
            outcome, reason = await self._cycle()
        except Exception as e:
            logger.exception("Cycle %d failed", self.state.cycle_count)
            self._last_error = e
            self.state.current_action_id = None
            outcome = CycleOutcome.RATE_LIMITED if _is_rate_limit(e) else CycleOutcome.PROVIDER_ERROR
            reason = str(e)
            self.work_log.write("engine", f"Cycle failed: {e}", EntryStatus.ERROR)

        self._persist()
        self._start_rest(outcome, reason)
        self.events.emit(
            ObserverEvent.CYCLE_COMPLETED,
            {"cycle": self.state.cycle_count, "outcome": outcome.value, "state": self.state.to_dict()},
        )
        return outcome

    async def _cycle(self) -> tuple[CycleOutcome, str | None]:
        skip = self.config.rest_policy.check_quiet_hours(self.clock.now())
        if skip is not None:
            self.work_log.write("scheduler", skip.message)
            return CycleOutcome.QUIET_HOURS, skip.message

        # SELECTING
        self._set_mode(EngineMode.SELECTING)
        self._withdraw_abandoned()
        handoff = self._read_handoff()
        goal = self.goal_manager.select_next_goal()
        if goal is not None:
            self.work_log.write("goals", f"Working on: {goal.title}")
        else:
            self.work_log.write("goals", "No active goals; asking for ad-hoc suggestions")

        # PROPOSING
        self._set_mode(EngineMode.PROPOSING)
        try:
            created = await self._propose(goal, handoff)
        except BackboneError as e:
            self._last_error = e
            logger.warning("Proposer failed: %s", e)
            self.work_log.write("proposer", f"Proposer failed: {e.message}", EntryStatus.WARNING, e.to_dict())
            if e.is_rate_limit:
                return CycleOutcome.RATE_LIMITED, e.message
            return CycleOutcome.PROVIDER_ERROR, e.message

        # EXECUTING
        executed: list[Action] = []
        rate_limited = False
        while not self._stop_event.is_set():
            action = self.queue.next_approved()
            if action is None:
                break
            self._set_mode(EngineMode.EXECUTING)
            rate_limited = await self._execute(action)
            executed.append(action)
            if rate_limited:
                remaining = len(self.queue.approved)
                if remaining:
                    self.work_log.write("executor", f"Rate limited; {remaining} approved actions stay queued")
                break

        if executed:
            self._write_handoff(goal, executed[-1])

        if rate_limited:
            return CycleOutcome.RATE_LIMITED, "backend rate limited"
        if executed or created:
            return CycleOutcome.SUCCESS, None
        return CycleOutcome.NO_WORK, "nothing to do"

    # =========================================================================
    # Phases
    # =========================================================================

    async def _propose(self, goal: Goal | None, handoff: HandoffContext | None) -> list[Action]:
        desired = self.config.max_proposed_actions - len(self.queue.pending)
        if desired <= 0:
            logger.debug("Pending queue full (%d); not asking for proposals", len(self.queue.pending))
            return []

        context = await self._build_context(goal, handoff)
        try:
            proposals = await self.proposer.generate_actions(context, desired)
        except BackboneError:
            raise
        except Exception as e:
            raise ProviderError(
                context={"provider": type(self.proposer).__name__, "detail": str(e)},
                cause=e,
            ) from e

        policy = self.config.approval_policy
        goal_id = goal.id if goal else None
        created: list[Action] = []
        for proposal in proposals[:desired]:
            action = self.queue.submit(proposal, policy, goal_id=goal_id)
            if action is not None:
                created.append(action)

        if created:
            auto = sum(1 for a in created if not a.requires_approval)
            self.work_log.write(
                "proposer",
                f"{len(created)} new actions ({auto} auto-approved, {len(created) - auto} awaiting approval)",
            )
            self.events.emit(
                ObserverEvent.PROPOSALS_UPDATED,
                {
                    "proposed": [a.to_dict() for a in created],
                    "pending": [a.to_dict() for a in self.queue.pending],
                },
            )
        return created

    async def _build_context(self, goal: Goal | None, handoff: HandoffContext | None) -> dict[str, Any]:
        context = await self.context_providers.gather()
        context["goal"] = goal.to_dict() if goal else None
        context["handoff"] = handoff.to_dict() if handoff else None
        return context

    async def _execute(self, action: Action) -> bool:
        """Run one approved action to a terminal state.

        Returns:
            True if the backend reported a rate limit.
        """
        self.queue.begin(action)
        self.state.current_action_id = action.id
        self.events.emit(ObserverEvent.ACTION_STARTED, action.to_dict())
        self.work_log.write("executor", f"Started: {action.title}", EntryStatus.STARTED)

        try:
            outcome = await self.executor.run(action, on_event=self._on_execution_event)
        except Exception as e:
            logger.exception("Executor raised for action %s", action.id)
            outcome = ExecutionOutcome(
                success=False,
                error=str(e),
                rate_limited=_is_rate_limit(e),
                backend_id=action.execution_plan.backend_id,
            )

        now = self.clock.now()
        try:
            if outcome.success:
                action.complete(now, outcome.result)
                logger.info("Action %s completed on %s", action.id, outcome.backend_id)
                self.work_log.write("executor", f"Completed: {action.title}", EntryStatus.SUCCESS)
                self.events.emit(ObserverEvent.ACTION_COMPLETED, action.to_dict())
                self._credit_goal(action)
            else:
                err = ExecutionError(
                    ErrorCode.EXECUTION_RATE_LIMITED if outcome.rate_limited else ErrorCode.EXECUTION_FAILED,
                    context={"backend": outcome.backend_id or "none", "detail": outcome.error},
                )
                action.fail(now, outcome.error or "unknown error")
                logger.warning("Action %s failed: %s", action.id, err)
                self.work_log.write("executor", f"Failed: {action.title}: {outcome.error}", EntryStatus.ERROR, err.to_dict())
                self.events.emit(ObserverEvent.ACTION_FAILED, action.to_dict())
        finally:
            self.queue.finish(action)
            self.state.current_action_id = None
        return outcome.rate_limited

    def _on_execution_event(self, event: ExecutionEvent) -> None:
        if event.type in (ExecutionEventType.TEXT, ExecutionEventType.TOOL_CALL, ExecutionEventType.TOOL_RESULT):
            self.events.emit(ObserverEvent.ACTION_PROGRESS, event.to_dict())

    def _credit_goal(self, action: Action) -> None:
        if action.goal_id is None:
            return
        goal = self.goal_manager.get_goal(action.goal_id)
        if goal is None or goal.is_terminal:
            return
        goal = self.goal_manager.update_progress(goal.id, self.config.progress_per_action)
        if goal.status == GoalStatus.COMPLETED:
            self.work_log.write("goals", f"Goal completed: {goal.title}", EntryStatus.SUCCESS)

    def _withdraw_abandoned(self) -> None:
        abandoned = {
            g.id for g in self.goal_manager.goals if g.status == GoalStatus.ABANDONED
        }
        for goal_id in abandoned:
            for action in self.queue.reject_for_goal(goal_id, "goal abandoned"):
                self.work_log.write("approval", f"Withdrawn (goal abandoned): {action.title}")

    # =========================================================================
    # Handoff
    # =========================================================================

    def _read_handoff(self) -> HandoffContext | None:
        handoff = self._handoff
        if handoff is not None and handoff.is_expired(self.clock.now()):
            logger.info("Discarding handoff from %s (expired)", handoff.created_at.isoformat())
            self._handoff = None
            return None
        return handoff

    def _write_handoff(self, goal: Goal | None, action: Action) -> None:
        self._handoff = HandoffContext.create(self.clock.now(), goal, action)

    @property
    def handoff(self) -> HandoffContext | None:
        """The live handoff (None once expired)."""
        return self._read_handoff()

    # =========================================================================
    # State
    # =========================================================================

    def _set_mode(self, mode: EngineMode) -> None:
        previous = self.state.mode
        if previous == mode:
            return
        self.state.mode = mode
        self.work_log.write("engine", f"{previous.value} -> {mode.value}")
        self.events.emit(ObserverEvent.STATE_CHANGED, {"from": previous.value, "to": mode.value})

    def _start_rest(self, outcome: CycleOutcome, reason: str | None) -> None:
        policy = self.config.rest_policy
        delay_ms, level = policy.rest_for(outcome)
        now = self.clock.now()
        self.state.rest_level = level
        self.state.rest_reason = reason
        self.state.next_cycle_at = now + timedelta(milliseconds=delay_ms)
        self._set_mode(EngineMode.RESTING)

        minutes = delay_ms / 60_000
        self.work_log.write("scheduler", f"Resting {minutes:g} min ({level.value})")
        self.events.emit(
            ObserverEvent.REST_STARTED,
            {
                "delay_ms": delay_ms,
                "rest_level": level.value,
                "next_cycle_at": to_iso(self.state.next_cycle_at),
                "reason": reason,
            },
        )

    def _persist(self) -> None:
        snapshot = EngineSnapshot(
            goals=self.goal_manager.goals,
            actions=self.queue.snapshot(),
            handoff=self._handoff,
            rejected=self.queue.rejected_fingerprints,
        )
        try:
            self.store.save(snapshot)
        except StoreError as e:
            # Saved again at the end of the next cycle
            self._last_error = e
            logger.warning("Failed to save engine state: %s", e)
            self.work_log.write("engine", f"Save failed: {e.message}", EntryStatus.WARNING)

    def status(self) -> dict[str, Any]:
        """JSON-ready summary for status displays."""
        running = self.queue.running
        handoff = self.handoff
        next_scheduled = self.queue.next_scheduled()
        return {
            "running": self.is_running(),
            "state": self.state.to_dict(),
            "config": {
                "auto_approve_types": self.config.approval_policy.names(),
                "cycle_interval_ms": self.config.cycle_interval_ms,
                "quiet_hours": str(self.config.quiet_hours) if self.config.quiet_hours else None,
            },
            "goals": {
                "active": len(self.goal_manager.get_active_goals()),
                "total": len(self.goal_manager.goals),
            },
            "actions": {
                "pending": len(self.queue.pending),
                "approved": len(self.queue.approved),
                "waiting": len(self.queue.waiting),
                "next_scheduled": next_scheduled.to_dict() if next_scheduled else None,
                "running": running.to_dict() if running else None,
            },
            "handoff": handoff.to_dict() if handoff else None,
            "backends": self.executor.availability(),
            "last_error": _describe_error(self._last_error),
        }

    async def observe(self) -> str:
        """Ask the proposer for a narrative of the current situation.

        Read-only: the goal that would be selected is not activated.
        """
        goal = self.goal_manager.peek_next_goal()
        context = await self._build_context(goal, self.handoff)
        return await self.proposer.observe(context)


def _merge(loaded: Iterable[T], live: Iterable[T]) -> list[T]:
    """Loaded items in order, replaced by the live object where ids match."""
    current = {item.id: item for item in live}
    merged = [current.pop(item.id, item) for item in loaded]
    return [*merged, *current.values()]

def _is_rate_limit(exc: Exception) -> bool:
    if isinstance(exc, BackboneError):
        return exc.is_rate_limit
    return is_rate_limit_message(str(exc))


def _describe_error(exc: Exception | None) -> dict[str, Any] | None:
    if exc is None:
        return None
    if isinstance(exc, BackboneError):
        return exc.to_dict()
    return {"error_id": None, "message": str(exc), "category": type(exc).__name__}
