"""Tests for the Backbone error taxonomy."""

import pytest

from backbone.core.errors import (
    ERROR_MESSAGES,
    BackboneError,
    ConfigError,
    ErrorCode,
    ExecutionError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    StoreError,
    from_anthropic_error,
    invalid_transition,
    is_rate_limit_message,
    not_found,
    provider_timeout,
)


class TestErrorCodes:
    """Code numbering and categories."""

    def test_every_code_has_a_message(self) -> None:
        assert set(ERROR_MESSAGES) == set(ErrorCode)

    @pytest.mark.parametrize(
        ("code", "category"),
        [
            (ErrorCode.PROVIDER_TIMEOUT, "provider"),
            (ErrorCode.EXECUTION_NO_BACKEND, "execution"),
            (ErrorCode.STORE_CORRUPT, "store"),
            (ErrorCode.STATE_NOT_FOUND, "state"),
            (ErrorCode.CONFIG_UNKNOWN_KEY, "config"),
        ],
    )
    def test_category(self, code: ErrorCode, category: str) -> None:
        assert code.category == category

    def test_rate_limit_codes(self) -> None:
        limited = {code for code in ErrorCode if code.is_rate_limit}
        assert limited == {ErrorCode.PROVIDER_RATE_LIMITED, ErrorCode.EXECUTION_RATE_LIMITED}

    def test_unrecoverable_codes(self) -> None:
        assert not ErrorCode.STORE_CORRUPT.is_recoverable
        assert not ErrorCode.PROVIDER_AUTH_FAILED.is_recoverable
        assert ErrorCode.STORE_WRITE_FAILED.is_recoverable
        assert ErrorCode.PROVIDER_RATE_LIMITED.is_recoverable


class TestBackboneError:
    """Formatting and serialization."""

    def test_message_and_str(self) -> None:
        err = provider_timeout("anthropic", 60)
        assert err.code == ErrorCode.PROVIDER_TIMEOUT
        assert err.message == "Request to anthropic timed out after 60s."
        assert str(err) == "[BB-1002] Request to anthropic timed out after 60s."

    def test_missing_context_keeps_template(self) -> None:
        err = StoreError(ErrorCode.STORE_CORRUPT)
        assert err.message == ERROR_MESSAGES[ErrorCode.STORE_CORRUPT]

    @pytest.mark.parametrize(
        ("cls", "code"),
        [
            (ProviderError, ErrorCode.PROVIDER_API_ERROR),
            (RateLimitError, ErrorCode.PROVIDER_RATE_LIMITED),
            (ExecutionError, ErrorCode.EXECUTION_FAILED),
            (StoreError, ErrorCode.STORE_READ_FAILED),
            (ConfigError, ErrorCode.CONFIG_INVALID),
            (NotFoundError, ErrorCode.STATE_NOT_FOUND),
        ],
    )
    def test_default_codes(self, cls: type[BackboneError], code: ErrorCode) -> None:
        err = cls()
        assert err.code == code
        assert isinstance(err, BackboneError)

    def test_rate_limit_error_is_a_provider_error(self) -> None:
        err = RateLimitError(context={"provider": "anthropic"})
        assert isinstance(err, ProviderError)
        assert err.is_rate_limit
        assert err.is_recoverable

    def test_to_dict(self) -> None:
        cause = OSError("disk full")
        err = StoreError(
            ErrorCode.STORE_WRITE_FAILED,
            context={"path": "state.json", "detail": "disk full"},
            cause=cause,
        )
        assert err.cause is cause
        assert err.to_dict() == {
            "error_id": "BB-3003",
            "code": 3003,
            "category": "store",
            "message": "Failed to write state store 'state.json': disk full",
            "recoverable": True,
            "context": {"path": "state.json", "detail": "disk full"},
        }

    def test_factories(self) -> None:
        assert str(not_found("goal", "goal_x")) == "[BB-4002] goal 'goal_x' not found."
        err = invalid_transition("action", "act_1", "completed", "running")
        assert err.message == "Cannot move action 'act_1' from completed to running."


class TestRateLimitDetection:
    """Quota signals in free-form upstream text."""

    @pytest.mark.parametrize(
        "text",
        [
            "rate limit exceeded",
            "rate_limit_error",
            "Claude usage limit reached",
            "Quota exhausted for today",
            "HTTP 429",
            "Too Many Requests",
        ],
    )
    def test_detected(self, text: str) -> None:
        assert is_rate_limit_message(text)

    @pytest.mark.parametrize("text", [None, "", "file not found", "exit code 4290x", "limited edition"])
    def test_not_detected(self, text) -> None:
        assert not is_rate_limit_message(text)


class TestAnthropicTranslation:
    """from_anthropic_error() maps SDK exceptions by name and message."""

    @staticmethod
    def _exc(name: str, message: str = "") -> Exception:
        return type(name, (Exception,), {})(message)

    def test_rate_limit(self) -> None:
        err = from_anthropic_error(self._exc("RateLimitError", "slow down"), "claude")
        assert isinstance(err, RateLimitError)
        assert err.context["model"] == "claude"

    def test_auth(self) -> None:
        err = from_anthropic_error(self._exc("AuthenticationError", "401"), "claude")
        assert err.code == ErrorCode.PROVIDER_AUTH_FAILED
        assert "ANTHROPIC_API_KEY" in err.message

    def test_unavailable(self) -> None:
        err = from_anthropic_error(self._exc("APIConnectionError", "reset"), "claude")
        assert err.code == ErrorCode.PROVIDER_UNAVAILABLE

    def test_timeout(self) -> None:
        err = from_anthropic_error(self._exc("APITimeoutError", "timed out"), "claude")
        assert err.code == ErrorCode.PROVIDER_TIMEOUT

    def test_generic(self) -> None:
        original = self._exc("BadRequestError", "max_tokens too large")
        err = from_anthropic_error(original, "claude")
        assert err.code == ErrorCode.PROVIDER_API_ERROR
        assert "max_tokens too large" in err.message
        assert err.cause is original
