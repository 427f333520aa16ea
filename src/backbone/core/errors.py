"""Backbone Error System.

Provides structured error handling with:
- Numeric error codes for programmatic handling
- User-friendly messages
- Context for debugging

Every error the engine raises derives from BackboneError. The controller
catches them at its boundary and turns them into a work log entry plus a
rest delay; only StoreError during initialize() stops the engine.
"""

import re
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Numeric error codes organized by category.

    Format: XYYY where X = category, YYY = specific error

    Categories:
        1xxx - Proposer/Provider errors
        2xxx - Execution/Backend errors
        3xxx - Store errors
        4xxx - State errors
        5xxx - Configuration errors
    """

    # 1xxx - Provider Errors
    PROVIDER_API_ERROR = 1001
    PROVIDER_TIMEOUT = 1002
    PROVIDER_RATE_LIMITED = 1003
    PROVIDER_AUTH_FAILED = 1004
    PROVIDER_UNAVAILABLE = 1005
    PROVIDER_RESPONSE_INVALID = 1006

    # 2xxx - Execution Errors
    EXECUTION_FAILED = 2001
    EXECUTION_TIMEOUT = 2002
    EXECUTION_NO_BACKEND = 2003
    EXECUTION_RATE_LIMITED = 2004

    # 3xxx - Store Errors
    STORE_CORRUPT = 3001
    STORE_READ_FAILED = 3002
    STORE_WRITE_FAILED = 3003

    # 4xxx - State Errors
    STATE_INVALID_TRANSITION = 4001
    STATE_NOT_FOUND = 4002
    STATE_CONCURRENT_LIMIT = 4003
    STATE_DEPENDENCY_FAILED = 4004

    # 5xxx - Configuration Errors
    CONFIG_INVALID = 5001
    CONFIG_UNKNOWN_KEY = 5002

    @property
    def category(self) -> str:
        """Get the error category name."""
        prefix = self.value // 1000
        return {
            1: "provider",
            2: "execution",
            3: "store",
            4: "state",
            5: "config",
        }.get(prefix, "unknown")

    @property
    def is_recoverable(self) -> bool:
        """Whether the loop can simply retry on a later cycle."""
        non_recoverable = {
            ErrorCode.PROVIDER_AUTH_FAILED,
            ErrorCode.STORE_CORRUPT,
            ErrorCode.CONFIG_INVALID,
            ErrorCode.CONFIG_UNKNOWN_KEY,
        }
        return self not in non_recoverable

    @property
    def is_rate_limit(self) -> bool:
        return self in (ErrorCode.PROVIDER_RATE_LIMITED, ErrorCode.EXECUTION_RATE_LIMITED)


ERROR_MESSAGES: dict[ErrorCode, str] = {
    # Provider errors
    ErrorCode.PROVIDER_API_ERROR: "API error from {provider}: {detail}",
    ErrorCode.PROVIDER_TIMEOUT: "Request to {provider} timed out after {timeout}s.",
    ErrorCode.PROVIDER_RATE_LIMITED: "Rate limited by {provider}.",
    ErrorCode.PROVIDER_AUTH_FAILED: "Authentication failed for {provider}. Check {env_var}.",
    ErrorCode.PROVIDER_UNAVAILABLE: "Provider '{provider}' is unavailable.",
    ErrorCode.PROVIDER_RESPONSE_INVALID: "Invalid response from {provider}: {detail}",

    # Execution errors
    ErrorCode.EXECUTION_FAILED: "Backend '{backend}' failed: {detail}",
    ErrorCode.EXECUTION_TIMEOUT: "Backend '{backend}' timed out after {timeout}s.",
    ErrorCode.EXECUTION_NO_BACKEND: "No execution backend available.",
    ErrorCode.EXECUTION_RATE_LIMITED: "Backend '{backend}' is rate limited.",

    # Store errors
    ErrorCode.STORE_CORRUPT: "State store at '{path}' is corrupt: {detail}",
    ErrorCode.STORE_READ_FAILED: "Failed to read state store '{path}': {detail}",
    ErrorCode.STORE_WRITE_FAILED: "Failed to write state store '{path}': {detail}",

    # State errors
    ErrorCode.STATE_INVALID_TRANSITION: "Cannot move {kind} '{id}' from {current} to {target}.",
    ErrorCode.STATE_NOT_FOUND: "{kind} '{id}' not found.",
    ErrorCode.STATE_CONCURRENT_LIMIT: "Action '{id}' cannot start while '{running}' is running.",
    ErrorCode.STATE_DEPENDENCY_FAILED: "Action '{dependency}' ended {status}; nothing can wait on it.",

    # Config errors
    ErrorCode.CONFIG_INVALID: "Invalid configuration for '{key}': {detail}",
    ErrorCode.CONFIG_UNKNOWN_KEY: "Unknown configuration key '{key}'.",
}


_RATE_LIMIT_PATTERN = re.compile(
    r"rate[\s_-]?limit|usage limit|quota|too many requests|\b429\b",
    re.IGNORECASE,
)


def is_rate_limit_message(text: str | None) -> bool:
    """Check whether an upstream message signals quota exhaustion."""
    if not text:
        return False
    return bool(_RATE_LIMIT_PATTERN.search(text))


class BackboneError(Exception):
    """Base error type for all Backbone errors.

    Example:
        >>> err = ProviderError(
        ...     ErrorCode.PROVIDER_TIMEOUT,
        ...     context={"provider": "anthropic", "timeout": 60},
        ... )
        >>> print(err)
        [BB-1002] Request to anthropic timed out after 60s.
    """

    default_code: ErrorCode = ErrorCode.PROVIDER_API_ERROR

    def __init__(
        self,
        code: ErrorCode | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code if code is not None else self.default_code
        self.context = context or {}
        self.cause = cause
        super().__init__(str(self))

    @property
    def message(self) -> str:
        """Get the formatted user-friendly message."""
        template = ERROR_MESSAGES.get(self.code, "An error occurred: {detail}")
        try:
            return template.format(**self.context)
        except KeyError:
            return template

    @property
    def is_recoverable(self) -> bool:
        return self.code.is_recoverable

    @property
    def is_rate_limit(self) -> bool:
        return self.code.is_rate_limit

    @property
    def category(self) -> str:
        return self.code.category

    @property
    def error_id(self) -> str:
        """Get the error ID string (e.g., 'BB-1003')."""
        return f"BB-{self.code.value}"

    def __str__(self) -> str:
        return f"[{self.error_id}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, context={self.context!r})"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict for logging and status output."""
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "category": self.category,
            "message": self.message,
            "recoverable": self.is_recoverable,
            "context": self.context,
        }


class ProviderError(BackboneError):
    """The action proposer (or the model behind it) failed or timed out."""

    default_code = ErrorCode.PROVIDER_API_ERROR


class RateLimitError(ProviderError):
    """An upstream call signalled quota exhaustion."""

    default_code = ErrorCode.PROVIDER_RATE_LIMITED


class ExecutionError(BackboneError):
    """A backend's stream ended in an error."""

    default_code = ErrorCode.EXECUTION_FAILED


class StoreError(BackboneError):
    """The persistence layer failed."""

    default_code = ErrorCode.STORE_READ_FAILED


class InvalidTransitionError(BackboneError):
    """A status change that the lifecycle does not allow."""

    default_code = ErrorCode.STATE_INVALID_TRANSITION


class NotFoundError(BackboneError):
    """A goal or action id that does not exist."""

    default_code = ErrorCode.STATE_NOT_FOUND


class ConfigError(BackboneError):
    """Invalid configuration."""

    default_code = ErrorCode.CONFIG_INVALID


# Convenience factory functions

def invalid_transition(kind: str, id: str, current: str, target: str) -> InvalidTransitionError:
    """Create a STATE_INVALID_TRANSITION error."""
    return InvalidTransitionError(
        context={"kind": kind, "id": id, "current": current, "target": target},
    )


def not_found(kind: str, id: str) -> NotFoundError:
    return NotFoundError(context={"kind": kind, "id": id})


def provider_timeout(provider: str, timeout: float) -> ProviderError:
    return ProviderError(
        ErrorCode.PROVIDER_TIMEOUT,
        context={"provider": provider, "timeout": timeout},
    )


# Error translation from external exceptions

def from_anthropic_error(exc: Exception, model: str) -> ProviderError:
    """Translate Anthropic client exceptions to ProviderError."""
    exc_type = type(exc).__name__
    message = str(exc)
    provider = "anthropic"

    if "ratelimit" in exc_type.lower() or is_rate_limit_message(message):
        return RateLimitError(
            context={"model": model, "provider": provider},
            cause=exc,
        )

    if "auth" in exc_type.lower() or "401" in message or "invalid api key" in message.lower():
        return ProviderError(
            ErrorCode.PROVIDER_AUTH_FAILED,
            context={"model": model, "provider": provider, "env_var": "ANTHROPIC_API_KEY"},
            cause=exc,
        )

    if "overloaded" in message.lower() or "connection" in exc_type.lower():
        return ProviderError(
            ErrorCode.PROVIDER_UNAVAILABLE,
            context={"model": model, "provider": provider},
            cause=exc,
        )

    if "timeout" in exc_type.lower() or "timed out" in message.lower():
        return ProviderError(
            ErrorCode.PROVIDER_TIMEOUT,
            context={"model": model, "provider": provider, "timeout": "unknown"},
            cause=exc,
        )

    return ProviderError(
        ErrorCode.PROVIDER_API_ERROR,
        context={"model": model, "provider": provider, "detail": message},
        cause=exc,
    )
