"""Action proposer contract."""

from typing import Protocol, runtime_checkable

from backbone.actions.models import ProposedAction
from backbone.core.types import ProposalContext


@runtime_checkable
class ActionProposer(Protocol):
    """Turns a context snapshot into candidate actions.

    Every value in the context is opaque data to forward to the reasoning
    call. Failures are raised as ProviderError (RateLimitError when quota is
    exhausted); the controller never lets them stop the loop.
    """

    async def generate_actions(
        self,
        context: ProposalContext,
        desired_count: int,
    ) -> list[ProposedAction]:
        ...

    async def observe(self, context: ProposalContext) -> str:
        """Short narrative about the current situation."""
        ...
