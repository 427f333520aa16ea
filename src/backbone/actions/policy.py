"""Approval policy: which action types may run without a human."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from backbone.actions.models import Action, ActionType, ProposedAction
from backbone.core.errors import ConfigError

DEFAULT_AUTO_APPROVE: frozenset[ActionType] = frozenset(
    {ActionType.RESEARCH, ActionType.ANALYZE, ActionType.PLAN}
)


@dataclass(frozen=True, slots=True)
class ApprovalPolicy:
    """Set of auto-approved action types.

    Everything outside the set waits in the pending queue for
    approve_action() / reject_action().
    """

    auto_approve_types: frozenset[ActionType] = field(default=DEFAULT_AUTO_APPROVE)

    @classmethod
    def from_names(cls, names: Iterable[str | ActionType]) -> "ApprovalPolicy":
        """Build from type names (e.g. config values)."""
        return cls(parse_action_types(names))

    def requires_approval(self, action: Action | ProposedAction | ActionType) -> bool:
        action_type = action if isinstance(action, ActionType) else action.type
        return action_type not in self.auto_approve_types

    def names(self) -> list[str]:
        return sorted(t.value for t in self.auto_approve_types)


def parse_action_types(names: Iterable[str | ActionType]) -> frozenset[ActionType]:
    """Strict parse of action type names.

    Raises:
        ConfigError: On an unknown name (never silently widen auto-approval).
    """
    types = set()
    for name in names:
        if isinstance(name, ActionType):
            types.add(name)
            continue
        try:
            types.add(ActionType(str(name).strip().lower()))
        except ValueError as e:
            raise ConfigError(
                context={"key": "auto_approve_types", "detail": f"unknown action type {name!r}"},
                cause=e,
            ) from e
    return frozenset(types)
