"""Wiring: build a ready-to-run controller from a BackboneConfig."""

import logging
from pathlib import Path

from backbone.config import BackboneConfig, get_config
from backbone.core.clock import Clock, SystemClock
from backbone.core.errors import ConfigError, ErrorCode
from backbone.engine.context import ContextProviders
from backbone.engine.controller import AutonomousLoopController
from backbone.events.bus import EventBus
from backbone.events.worklog import WorkLog
from backbone.execution.backends.agentic_cli import AgenticCliBackend
from backbone.execution.backends.model_backend import ModelBackend
from backbone.execution.executor import ToolExecutor
from backbone.goals.manager import GoalManager
from backbone.goals.models import GoalStatus
from backbone.models.anthropic import AnthropicModel
from backbone.models.protocol import ModelProtocol
from backbone.persistence.store import JsonStateStore, StateStore
from backbone.proposer.model_proposer import ModelProposer

logger = logging.getLogger(__name__)

# Lower runs first
AGENTIC_CLI_PRIORITY = 0
MODEL_BACKEND_PRIORITY = 10


def create_model(config: BackboneConfig) -> ModelProtocol:
    """Instantiate the configured model provider.

    Raises:
        ConfigError: For an unsupported provider.
    """
    provider = config.model.provider.lower()
    if provider == "anthropic":
        return AnthropicModel(model=config.model.model, max_tokens=config.model.max_tokens)
    raise ConfigError(
        ErrorCode.CONFIG_INVALID,
        context={"key": "model.provider", "detail": f"unsupported provider {provider!r}"},
    )


def create_executor(
    config: BackboneConfig,
    model: ModelProtocol,
    clock: Clock | None = None,
) -> ToolExecutor:
    """Executor with the agentic CLI first and the model as fallback."""
    executor = ToolExecutor(clock=clock)
    backends = config.backends
    if backends.agentic_cli_enabled:
        executor.register(
            AgenticCliBackend(
                command=backends.agentic_cli_command,
                timeout=backends.timeout_s,
                cwd=backends.workdir,
            ),
            priority=AGENTIC_CLI_PRIORITY,
        )
    if backends.model_backend_enabled:
        executor.register(
            ModelBackend(model, timeout=backends.timeout_s, max_tokens=config.model.max_tokens),
            priority=MODEL_BACKEND_PRIORITY,
        )
    if not executor.backends:
        logger.warning("No execution backends enabled; approved actions will fail")
    return executor


def goals_context(manager: GoalManager):
    """Context provider listing open goals for the proposer."""

    def provide() -> list[dict]:
        return [
            {
                "id": g.id,
                "title": g.title,
                "category": g.category.value,
                "priority": g.priority,
                "progress": round(g.progress, 3),
                "phase": g.phase.value,
                "status": g.status.value,
            }
            for g in manager.goals
            if g.status in (GoalStatus.PENDING, GoalStatus.ACTIVE)
        ]

    return provide


def build_controller(
    config: BackboneConfig | None = None,
    *,
    clock: Clock | None = None,
    model: ModelProtocol | None = None,
    store: StateStore | None = None,
    executor: ToolExecutor | None = None,
) -> AutonomousLoopController:
    """Assemble the engine from configuration.

    Anything passed explicitly replaces the configured component.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    config = config or get_config()
    clock = clock or SystemClock()
    engine_config = config.engine.to_engine_config()

    events = EventBus()
    store = store or JsonStateStore(Path(config.storage.state_path).expanduser())
    goal_manager = GoalManager(store=store, events=events, clock=clock)

    model = model or create_model(config)
    proposer = ModelProposer(model, timeout=config.model.proposer_timeout_s)
    executor = executor or create_executor(config, model, clock)

    context_providers = ContextProviders()
    context_providers.register("goals", goals_context(goal_manager))

    return AutonomousLoopController(
        goal_manager,
        proposer,
        executor,
        store,
        config=engine_config,
        clock=clock,
        work_log=WorkLog(clock=clock),
        events=events,
        context_providers=context_providers,
    )
