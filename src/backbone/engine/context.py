"""Context providers: named callbacks merged into the proposal context."""

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from backbone.core.types import JSONValue

logger = logging.getLogger(__name__)

ContextProvider = Callable[[], JSONValue | Awaitable[JSONValue]]


class ContextProviders:
    """Registry of ``name -> () -> JSONValue`` callbacks.

    Each provider is called once per gather(). A provider that raises or
    returns something that is not JSON-serializable contributes
    ``{"error": "..."}`` instead of breaking the cycle.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ContextProvider] = {}

    def register(self, name: str, provider: ContextProvider) -> None:
        self._providers[name] = provider

    def unregister(self, name: str) -> bool:
        return self._providers.pop(name, None) is not None

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    async def gather(self) -> dict[str, Any]:
        context: dict[str, Any] = {}
        for name, provider in list(self._providers.items()):
            try:
                value = provider()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                logger.warning("Context provider %s failed: %s", name, e)
                context[name] = {"error": str(e)}
                continue

            try:
                json.dumps(value)
            except (TypeError, ValueError) as e:
                logger.warning("Context provider %s returned non-JSON data: %s", name, e)
                value = {"error": f"not JSON-serializable: {e}"}
            context[name] = value
        return context
