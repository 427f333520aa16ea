"""LLM adapters used by the proposer and the model execution backend."""

from backbone.models.anthropic import AnthropicModel
from backbone.models.mock import MockModel
from backbone.models.protocol import (
    GenerateOptions,
    GenerateResult,
    ModelProtocol,
    TokenUsage,
    sanitize_llm_content,
)

__all__ = [
    "AnthropicModel",
    "GenerateOptions",
    "GenerateResult",
    "MockModel",
    "ModelProtocol",
    "TokenUsage",
    "sanitize_llm_content",
]
