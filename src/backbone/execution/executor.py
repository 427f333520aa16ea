"""Tool Executor — picks a backend and normalizes its event stream.

Backends are tried in fixed priority order (lower number first); the first
available one runs the action. Availability is checked once, before the run.

Every stream the executor emits has the same shape regardless of backend:
exactly one ``start``, then progress events, then exactly one terminal
``end`` or ``error``, all stamped with the action id.
"""

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from backbone.core.clock import Clock, SystemClock
from backbone.core.errors import ERROR_MESSAGES, BackboneError, ErrorCode, is_rate_limit_message
from backbone.execution.backends.base import ExecutionBackend
from backbone.execution.events import ExecutionEvent, ExecutionEventType

if TYPE_CHECKING:
    from backbone.actions.models import Action

logger = logging.getLogger(__name__)

EventCallback = Callable[[ExecutionEvent], None | Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Summary of one normalized run."""

    success: bool
    result: str | None = None
    error: str | None = None
    rate_limited: bool = False
    backend_id: str | None = None
    event_count: int = 0


@dataclass(slots=True)
class _Registration:
    backend: ExecutionBackend
    priority: int
    order: int


class ToolExecutor:
    """Backend registry with priority selection and stream normalization.

    Example:
        >>> executor = ToolExecutor()
        >>> executor.register(AgenticCliBackend(), priority=0)
        >>> executor.register(ModelBackend(AnthropicModel()), priority=10)
        >>> outcome = await executor.run(action)
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self._registrations: dict[str, _Registration] = {}

    # =========================================================================
    # Registry
    # =========================================================================

    def register(self, backend: ExecutionBackend, priority: int | None = None) -> None:
        """Register a backend under its id (replaces an existing one)."""
        order = len(self._registrations)
        self._registrations[backend.id] = _Registration(
            backend=backend,
            priority=order if priority is None else priority,
            order=order,
        )
        logger.debug("Registered backend %s", backend.id)

    def unregister(self, backend_id: str) -> bool:
        return self._registrations.pop(backend_id, None) is not None

    def get(self, backend_id: str) -> ExecutionBackend | None:
        registration = self._registrations.get(backend_id)
        return registration.backend if registration else None

    @property
    def backends(self) -> list[ExecutionBackend]:
        """Registered backends in selection order."""
        ordered = sorted(self._registrations.values(), key=lambda r: (r.priority, r.order))
        return [r.backend for r in ordered]

    def availability(self) -> dict[str, bool]:
        return {backend.id: _is_available(backend) for backend in self.backends}

    def select_backend(self, action: "Action | None" = None) -> ExecutionBackend | None:
        """First available backend, honouring a plan's preferred backend."""
        if action is not None and action.execution_plan.backend_id:
            preferred = self.get(action.execution_plan.backend_id)
            if preferred is not None and _is_available(preferred):
                return preferred
        for backend in self.backends:
            if _is_available(backend):
                return backend
        return None

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, action: "Action") -> AsyncIterator[ExecutionEvent]:
        """Run an action on the selected backend, yielding normalized events."""
        backend = self.select_backend(action)
        if backend is None:
            yield self._stamp(ExecutionEvent.start(backend=None), action)
            yield self._stamp(
                ExecutionEvent.error(
                    ERROR_MESSAGES[ErrorCode.EXECUTION_NO_BACKEND],
                    error_id=f"BB-{ErrorCode.EXECUTION_NO_BACKEND.value}",
                ),
                action,
            )
            return

        action.execution_plan.backend_id = backend.id
        logger.info("Executing action %s on %s", action.id, backend.id)

        started = False
        finished = False
        stream = backend.execute(action)
        try:
            async for event in stream:
                if event.type == ExecutionEventType.START:
                    if started:
                        continue
                elif not started:
                    yield self._stamp(ExecutionEvent.start(backend=backend.id), action)
                started = True

                yield self._stamp(event, action)
                if event.is_terminal:
                    finished = True
                    break
        except Exception as e:
            logger.warning("Backend %s raised during action %s: %s", backend.id, action.id, e)
            if not started:
                yield self._stamp(ExecutionEvent.start(backend=backend.id), action)
            yield self._stamp(
                ExecutionEvent.error(str(e), rate_limited=_is_rate_limit(e)),
                action,
            )
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not finished:
            if not started:
                yield self._stamp(ExecutionEvent.start(backend=backend.id), action)
            yield self._stamp(
                ExecutionEvent.error(f"Backend '{backend.id}' ended without a result"),
                action,
            )

    async def run(
        self,
        action: "Action",
        on_event: EventCallback | None = None,
    ) -> ExecutionOutcome:
        """Drive execute() to completion and summarize it.

        The result is the accumulated text output, or the end event's result
        when the backend streamed no text.
        """
        texts: list[str] = []
        count = 0
        terminal: ExecutionEvent | None = None

        async for event in self.execute(action):
            count += 1
            if on_event is not None:
                maybe = on_event(event)
                if inspect.isawaitable(maybe):
                    await maybe
            if event.type == ExecutionEventType.TEXT:
                texts.append(str(event.payload.get("text", "")))
            elif event.is_terminal:
                terminal = event

        backend_id = action.execution_plan.backend_id
        if terminal is None or terminal.type == ExecutionEventType.ERROR:
            payload = terminal.payload if terminal else {}
            error = str(payload.get("error") or "unknown error")
            return ExecutionOutcome(
                success=False,
                error=error,
                rate_limited=bool(payload.get("rate_limited")) or is_rate_limit_message(error),
                backend_id=backend_id,
                event_count=count,
            )

        result = "".join(texts) or terminal.payload.get("result") or ""
        return ExecutionOutcome(
            success=True,
            result=result,
            backend_id=backend_id,
            event_count=count,
        )

    def _stamp(self, event: ExecutionEvent, action: "Action") -> ExecutionEvent:
        return event.stamped(action.id, self.clock.now())


def _is_available(backend: ExecutionBackend) -> bool:
    try:
        return bool(backend.is_available())
    except Exception as e:
        logger.warning("Availability check failed for %s: %s", backend.id, e)
        return False


def _is_rate_limit(exc: Exception) -> bool:
    if isinstance(exc, BackboneError):
        return exc.is_rate_limit
    return is_rate_limit_message(str(exc))
