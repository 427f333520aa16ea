"""Execution backend contract."""

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from backbone.execution.events import ExecutionEvent

if TYPE_CHECKING:
    from backbone.actions.models import Action


@runtime_checkable
class ExecutionBackend(Protocol):
    """Runs one action and streams its lifecycle.

    A well-behaved stream starts with ``start`` and ends with exactly one
    ``end`` or ``error``. Backends enforce their own timeout; nothing above
    them cancels an in-flight run.
    """

    @property
    def id(self) -> str:
        ...

    def is_available(self) -> bool:
        """Pure capability query; must not start any work."""
        ...

    def execute(self, action: "Action") -> AsyncIterator[ExecutionEvent]:
        ...
