"""Runtime configuration of the loop controller."""

from dataclasses import dataclass, field, replace
from datetime import time

from backbone.actions.models import ActionType
from backbone.actions.policy import DEFAULT_AUTO_APPROVE, ApprovalPolicy
from backbone.engine.schedule import MINUTE_MS, QuietHours, RestPolicy


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Knobs the controller reads every cycle.

    Build from YAML/env via ``backbone.config.load_config().engine.to_engine_config()``.
    """

    auto_approve_types: frozenset[ActionType] = field(default=DEFAULT_AUTO_APPROVE)
    cycle_interval_ms: int = 15 * MINUTE_MS
    """Delay after a normal cycle (success, no work, provider error)."""

    rate_limit_rest_ms: int = 30 * MINUTE_MS
    quiet_hours_rest_ms: int = 60 * MINUTE_MS
    quiet_hours: QuietHours | None = QuietHours(time(22, 0), time(7, 0))
    """None disables quiet hours."""

    max_proposed_actions: int = 5
    """Upper bound on actions waiting for approval."""

    progress_per_action: float = 0.1
    """Goal progress credited for each completed action."""

    @property
    def approval_policy(self) -> ApprovalPolicy:
        return ApprovalPolicy(self.auto_approve_types)

    @property
    def rest_policy(self) -> RestPolicy:
        return RestPolicy(
            cycle_interval_ms=self.cycle_interval_ms,
            rate_limit_ms=self.rate_limit_rest_ms,
            quiet_hours_ms=self.quiet_hours_rest_ms,
            quiet_hours=self.quiet_hours,
        )

    def with_changes(self, **changes) -> "EngineConfig":
        return replace(self, **changes)
