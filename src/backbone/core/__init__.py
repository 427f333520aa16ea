"""Core building blocks shared by every Backbone component."""

from backbone.core.clock import Clock, ManualClock, SystemClock
from backbone.core.errors import (
    BackboneError,
    ConfigError,
    ErrorCode,
    ExecutionError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    StoreError,
    is_rate_limit_message,
)
from backbone.core.types import JSONValue, ProposalContext, new_id

__all__ = [
    "BackboneError",
    "Clock",
    "ConfigError",
    "ErrorCode",
    "ExecutionError",
    "InvalidTransitionError",
    "JSONValue",
    "ManualClock",
    "NotFoundError",
    "ProposalContext",
    "ProviderError",
    "RateLimitError",
    "StoreError",
    "SystemClock",
    "is_rate_limit_message",
    "new_id",
]
