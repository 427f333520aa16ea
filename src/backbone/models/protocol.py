"""Model protocol - provider-agnostic LLM interface.

Used by the model-backed proposer and the request/response execution backend.
Includes LLM output sanitization.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def sanitize_llm_content(text: str | None) -> str | None:
    """Remove control characters from LLM output.

    Preserves newlines, carriage returns, and tabs which are valid
    in JSON strings and needed for formatting.

    Args:
        text: Raw LLM output text

    Returns:
        Sanitized text with control characters removed, or None if input was None
    """
    if text is None:
        return None

    sanitized = "".join(c for c in text if not (ord(c) < 32 and c not in "\n\r\t"))

    if len(sanitized) != len(text):
        logger.debug(
            "Sanitized control chars from LLM output",
            extra={"chars_removed": len(text) - len(sanitized)},
        )

    return sanitized


# =============================================================================
# Generation Options & Results
# =============================================================================


@dataclass(frozen=True, slots=True)
class GenerateOptions:
    """Options for model generation."""

    temperature: float = 0.7
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] = ()
    system_prompt: str | None = None


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token usage statistics."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(frozen=True, slots=True)
class GenerateResult:
    """Result from model generation."""

    content: str | None
    model: str
    usage: TokenUsage | None = None
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        """Content as string, defaulting to empty string."""
        return self.content or ""


# =============================================================================
# Model Protocol
# =============================================================================


@runtime_checkable
class ModelProtocol(Protocol):
    """Protocol for LLM providers.

    Implementations: AnthropicModel, MockModel.
    """

    @property
    def model_id(self) -> str:
        """The model identifier (e.g., 'claude-sonnet-4-20250514')."""
        ...

    @property
    def is_configured(self) -> bool:
        """Whether the provider has what it needs to make a call (credentials)."""
        ...

    async def generate(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> GenerateResult:
        """Generate a complete response.

        Raises:
            ProviderError: On upstream failure (RateLimitError on quota exhaustion).
        """
        ...

    def generate_stream(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream a response as text chunks."""
        ...
