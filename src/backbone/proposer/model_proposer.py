"""Model-backed action proposer.

Sends the context snapshot to an LLM as JSON and asks for a JSON array of
actions. Parsing is tolerant: prose around the array is ignored and
malformed entries are skipped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from backbone.actions.models import ActionType, ProposedAction
from backbone.core.errors import (
    BackboneError,
    ErrorCode,
    ProviderError,
    provider_timeout,
)
from backbone.core.types import ProposalContext
from backbone.models.protocol import GenerateOptions, ModelProtocol

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are the planning core of a personal autonomous assistant.
You receive a JSON snapshot of the user's situation (goals, integrations, the
previous work handoff) and propose concrete, small units of work that move the
selected goal forward."""

_PROPOSAL_INSTRUCTIONS = """Propose up to {count} actions.

Respond with ONLY a JSON array. Each element:
{{"title": "...", "type": "{types}", "rationale": "...", "priority": 1-10}}

Prefer research, analyze and plan work that can run unattended. Continue the
handoff's next task when one is present.

Context:
{context}"""

_OBSERVE_INSTRUCTIONS = """In two or three sentences, describe what matters most
right now and what you would work on next.

Context:
{context}"""


@dataclass(slots=True)
class ModelProposer:
    """ActionProposer over a ModelProtocol.

    Example:
        >>> proposer = ModelProposer(MockModel(['[{"title": "Research X", "type": "research"}]']))
        >>> actions = await proposer.generate_actions({"goals": []}, desired_count=3)
    """

    model: ModelProtocol
    timeout: float = 60.0
    """Seconds before a proposal call is abandoned."""

    async def generate_actions(
        self,
        context: ProposalContext,
        desired_count: int,
    ) -> list[ProposedAction]:
        if desired_count <= 0:
            return []

        prompt = _PROPOSAL_INSTRUCTIONS.format(
            count=desired_count,
            types="|".join(t.value for t in ActionType),
            context=_dump_context(context),
        )
        text = await self._call(prompt, temperature=0.4)
        if text.strip() and _extract_json(text) is None:
            raise ProviderError(
                ErrorCode.PROVIDER_RESPONSE_INVALID,
                context={"provider": self.model.model_id, "detail": "no JSON array in response"},
            )
        proposals = parse_proposals(text, goal_id=_selected_goal_id(context))
        return proposals[:desired_count]

    async def observe(self, context: ProposalContext) -> str:
        text = await self._call(
            _OBSERVE_INSTRUCTIONS.format(context=_dump_context(context)),
            temperature=0.7,
        )
        return text.strip()

    async def _call(self, prompt: str, temperature: float) -> str:
        options = GenerateOptions(temperature=temperature, system_prompt=SYSTEM_PROMPT)
        try:
            async with asyncio.timeout(self.timeout):
                result = await self.model.generate(prompt, options=options)
        except TimeoutError as e:
            raise provider_timeout(self.model.model_id, self.timeout) from e
        except BackboneError:
            raise
        except Exception as e:
            raise ProviderError(
                context={"provider": self.model.model_id, "detail": str(e)},
                cause=e,
            ) from e
        return result.text


def parse_proposals(text: str, goal_id: str | None = None) -> list[ProposedAction]:
    """Extract proposals from model output.

    Accepts a bare JSON array, an array inside prose or a fenced block, or an
    object with an ``actions`` array.
    """
    data = _extract_json(text)
    if isinstance(data, dict):
        data = data.get("actions")
    if not isinstance(data, list):
        return []

    proposals: list[ProposedAction] = []
    for item in data:
        proposal = _to_proposal(item, goal_id)
        if proposal is None:
            logger.debug("Skipping malformed proposal: %r", item)
            continue
        proposals.append(proposal)
    return proposals


def _to_proposal(item: Any, goal_id: str | None) -> ProposedAction | None:
    if not isinstance(item, dict):
        return None
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    try:
        priority = int(item.get("priority", 5))
    except (TypeError, ValueError):
        priority = 5

    rationale = item.get("rationale") or item.get("description") or ""
    return ProposedAction(
        title=title.strip(),
        type=ActionType.parse(item.get("type")),
        rationale=str(rationale),
        priority=max(1, min(10, priority)),
        goal_id=item.get("goal_id") or goal_id,
        backend_id=item.get("backend") or None,
        prompt=item.get("prompt") or None,
    )


def _extract_json(text: str) -> Any:
    text = text.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Outermost array embedded in prose or a ``` block
    start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
    return None


def _selected_goal_id(context: ProposalContext) -> str | None:
    goal = context.get("goal")
    if isinstance(goal, dict):
        goal_id = goal.get("id")
        return goal_id if isinstance(goal_id, str) else None
    return None


def _dump_context(context: ProposalContext) -> str:
    return json.dumps(dict(context), indent=2, default=str)
