"""EventBus — in-process fan-out for engine observer events.

Observers (dashboards, notifiers, persistence hooks) subscribe to named
events and receive a JSON-ready payload. Delivery is fire-and-forget:

- Sync callbacks run immediately, in emission order.
- Coroutine callbacks are scheduled as tasks on the running loop.
- A failing observer is logged and counted, never propagated.

The engine never awaits an observer, so a slow dashboard cannot stall a cycle.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ObserverEvent(Enum):
    """Named events emitted by the engine."""

    ACTION_STARTED = "action-started"
    ACTION_COMPLETED = "action-completed"
    ACTION_FAILED = "action-failed"
    ACTION_APPROVED = "action-approved"
    ACTION_REJECTED = "action-rejected"
    ACTION_SCHEDULED = "action-scheduled"
    ACTION_PROGRESS = "action-progress"
    PROPOSALS_UPDATED = "proposals-updated"
    GOAL_PROGRESS = "goal-progress"
    GOAL_ABANDONED = "goal-abandoned"
    STATE_CHANGED = "state-changed"
    REST_STARTED = "rest-started"
    CYCLE_COMPLETED = "cycle-completed"


Callback = Callable[[Any], None | Awaitable[None]]


def deliver(callback: Callback, payload: Any, background: set[asyncio.Task]) -> bool:
    """Invoke one subscriber without letting it affect the caller.

    Returns:
        True if the callback ran (or was scheduled) without raising.
    """
    try:
        result = callback(payload)
    except Exception as e:
        logger.warning(
            "Observer error: %s (callback: %s)",
            e,
            getattr(callback, "__name__", str(callback)),
        )
        return False

    if inspect.isawaitable(result):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on; close the coroutine so it is not leaked
            if inspect.iscoroutine(result):
                result.close()
            logger.warning("Dropped async observer outside an event loop")
            return False
        task = loop.create_task(_guard(result, callback))
        background.add(task)
        task.add_done_callback(background.discard)
    return True


async def _guard(awaitable: Awaitable[None], callback: Callback) -> None:
    try:
        await awaitable
    except Exception as e:
        logger.warning(
            "Async observer error: %s (callback: %s)",
            e,
            getattr(callback, "__name__", str(callback)),
        )


@dataclass(slots=True)
class EventBus:
    """Named-event pub/sub.

    Usage:
        bus = EventBus()
        bus.on(ObserverEvent.ACTION_COMPLETED, lambda action: print(action["title"]))
        bus.emit(ObserverEvent.ACTION_COMPLETED, action.to_dict())
    """

    _subscribers: dict[ObserverEvent, list[Callback]] = field(default_factory=dict, init=False)
    _background: set[asyncio.Task] = field(default_factory=set, init=False)
    _emit_count: int = field(default=0, init=False)
    _error_count: int = field(default=0, init=False)

    def on(self, event: ObserverEvent, callback: Callback) -> bool:
        """Subscribe to an event.

        Returns:
            True if subscribed, False if already subscribed
        """
        callbacks = self._subscribers.setdefault(event, [])
        if callback in callbacks:
            return False
        callbacks.append(callback)
        return True

    def off(self, event: ObserverEvent, callback: Callback) -> bool:
        """Unsubscribe from an event.

        Returns:
            True if removed, False if not found
        """
        try:
            self._subscribers.get(event, []).remove(callback)
            return True
        except ValueError:
            return False

    def emit(self, event: ObserverEvent, payload: Any = None) -> int:
        """Deliver a payload to every subscriber of an event.

        Returns:
            Number of subscribers notified without error
        """
        self._emit_count += 1
        notified = 0
        for callback in list(self._subscribers.get(event, ())):
            if deliver(callback, payload, self._background):
                notified += 1
            else:
                self._error_count += 1
        return notified

    def subscriber_count(self, event: ObserverEvent | None = None) -> int:
        if event is not None:
            return len(self._subscribers.get(event, ()))
        return sum(len(callbacks) for callbacks in self._subscribers.values())

    @property
    def stats(self) -> dict[str, int]:
        return {
            "subscribers": self.subscriber_count(),
            "emitted": self._emit_count,
            "errors": self._error_count,
        }

    async def drain(self) -> None:
        """Wait for scheduled async observers (useful in tests and at shutdown)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def clear(self) -> int:
        """Remove all subscribers.

        Returns:
            Number of subscribers removed
        """
        count = self.subscriber_count()
        self._subscribers.clear()
        return count
