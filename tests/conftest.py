"""Pytest fixtures for Backbone tests."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime

import pytest

from backbone.actions.models import Action, ActionType, ProposedAction
from backbone.core.clock import ManualClock
from backbone.core.types import ProposalContext
from backbone.engine.config import EngineConfig
from backbone.engine.controller import AutonomousLoopController
from backbone.events.bus import EventBus
from backbone.events.worklog import WorkLog
from backbone.execution.events import ExecutionEvent
from backbone.execution.executor import ToolExecutor
from backbone.goals.manager import GoalManager
from backbone.persistence.store import InMemoryStateStore

# Monday noon, well outside the default 22:00-07:00 quiet hours
NOON = datetime(2026, 3, 2, 12, 0).astimezone()


# =============================================================================
# Test doubles
# =============================================================================


@dataclass
class ScriptedProposer:
    """ActionProposer that returns pre-scripted batches in order.

    A batch that is an Exception is raised. Once the script runs out every
    call returns an empty list.
    """

    batches: list[list[ProposedAction] | Exception] = field(default_factory=list)
    calls: list[tuple[dict, int]] = field(default_factory=list)
    observation: str = "All quiet."

    async def generate_actions(
        self,
        context: ProposalContext,
        desired_count: int,
    ) -> list[ProposedAction]:
        self.calls.append((dict(context), desired_count))
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return list(batch)

    async def observe(self, context: ProposalContext) -> str:
        self.calls.append((dict(context), 0))
        return self.observation


@dataclass
class ScriptedBackend:
    """ExecutionBackend that replays scripted event lists.

    With no script left it emits start, one text chunk and end.
    """

    id: str = "scripted"
    available: bool = True
    scripts: list[list[ExecutionEvent]] = field(default_factory=list)
    executed: list[str] = field(default_factory=list)
    on_execute: object = None
    """Optional callable(action) run when execution begins."""

    def is_available(self) -> bool:
        return self.available

    async def execute(self, action: Action) -> AsyncIterator[ExecutionEvent]:
        self.executed.append(action.id)
        if callable(self.on_execute):
            self.on_execute(action)
        if self.scripts:
            events = self.scripts.pop(0)
        else:
            events = [
                ExecutionEvent.start(backend=self.id),
                ExecutionEvent.text(f"Done: {action.title}"),
                ExecutionEvent.end(),
            ]
        for event in events:
            yield event


def proposal(title: str, action_type: ActionType = ActionType.RESEARCH, **kwargs) -> ProposedAction:
    return ProposedAction(title=title, type=action_type, **kwargs)


def make_action(
    title: str = "Research index funds",
    action_type: ActionType = ActionType.RESEARCH,
    *,
    requires_approval: bool = False,
    created_at: datetime = NOON,
    **kwargs,
) -> Action:
    return Action.from_proposal(
        ProposedAction(title=title, type=action_type, **kwargs),
        requires_approval=requires_approval,
        created_at=created_at,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NOON)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def proposer() -> ScriptedProposer:
    return ScriptedProposer()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def executor(clock: ManualClock, backend: ScriptedBackend) -> ToolExecutor:
    executor = ToolExecutor(clock=clock)
    executor.register(backend, priority=0)
    return executor


@pytest.fixture
def goal_manager(clock: ManualClock, events: EventBus) -> GoalManager:
    return GoalManager(events=events, clock=clock)


@pytest.fixture
def controller(
    goal_manager: GoalManager,
    proposer: ScriptedProposer,
    executor: ToolExecutor,
    store: InMemoryStateStore,
    clock: ManualClock,
) -> AutonomousLoopController:
    return AutonomousLoopController(
        goal_manager,
        proposer,
        executor,
        store,
        config=EngineConfig(),
        clock=clock,
        work_log=WorkLog(clock=clock),
    )
