"""Request/response backend that streams text from a model adapter."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from backbone.core.errors import BackboneError, is_rate_limit_message
from backbone.execution.events import ExecutionEvent
from backbone.models.protocol import GenerateOptions, ModelProtocol

if TYPE_CHECKING:
    from backbone.actions.models import Action

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are carrying out one unit of work for a personal assistant.
You cannot use tools: answer with your best analysis, plan or draft.
If the work should continue later, end with a block:

HANDOFF:
NEXT TASK: <the next concrete step>
CONTEXT: <what the next step needs to know>"""


@dataclass
class ModelBackend:
    """Fallback backend over any ModelProtocol.

    Available whenever the model is configured (e.g. an API key is set).
    """

    model: ModelProtocol
    timeout: float = 300.0
    max_tokens: int | None = None
    id: str = "model"

    def is_available(self) -> bool:
        return self.model.is_configured

    async def execute(self, action: "Action") -> AsyncIterator[ExecutionEvent]:
        yield ExecutionEvent.start(backend=self.id, model=self.model.model_id)

        options = GenerateOptions(system_prompt=SYSTEM_PROMPT, max_tokens=self.max_tokens)
        stream = self.model.generate_stream(action.execution_plan.prompt, options=options)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        chunks: list[str] = []

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                try:
                    chunk = await asyncio.wait_for(anext(stream), timeout=remaining)
                except StopAsyncIteration:
                    break
                if chunk:
                    chunks.append(chunk)
                    yield ExecutionEvent.text(chunk)
        except TimeoutError:
            logger.warning("Model %s timed out after %ss", self.model.model_id, self.timeout)
            yield ExecutionEvent.error(f"Model timed out after {self.timeout:g}s", timeout=True)
            return
        except BackboneError as e:
            yield ExecutionEvent.error(e.message, rate_limited=e.is_rate_limit, error_id=e.error_id)
            return
        except Exception as e:
            yield ExecutionEvent.error(str(e), rate_limited=is_rate_limit_message(str(e)))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        yield ExecutionEvent.end(result="".join(chunks))
