"""Mock model for testing."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from backbone.models.protocol import (
    GenerateOptions,
    GenerateResult,
    TokenUsage,
    sanitize_llm_content,
)


@dataclass(slots=True)
class MockModel:
    """Mock model for testing.

    Returns predefined responses in rotation, or echoes the prompt. A response
    that is an Exception instance is raised instead of returned.
    """

    responses: list[str | Exception] = field(default_factory=list)
    configured: bool = True
    _call_count: int = field(default=0, init=False)
    _prompts: list[str] = field(default_factory=list, init=False)

    @property
    def model_id(self) -> str:
        return "mock-model"

    @property
    def is_configured(self) -> bool:
        return self.configured

    @property
    def call_count(self) -> int:
        """Number of times generate was called."""
        return self._call_count

    @property
    def prompts(self) -> list[str]:
        """All prompts received."""
        return self._prompts

    async def generate(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> GenerateResult:
        """Generate a mock response."""
        self._prompts.append(prompt)
        self._call_count += 1

        if self.responses:
            response = self.responses[(self._call_count - 1) % len(self.responses)]
        else:
            response = f"Mock response to: {prompt[:50]}..."

        if isinstance(response, Exception):
            raise response

        return GenerateResult(
            content=sanitize_llm_content(response),
            model=self.model_id,
            usage=TokenUsage(
                prompt_tokens=len(prompt.split()),
                completion_tokens=len(response.split()),
                total_tokens=len(prompt.split()) + len(response.split()),
            ),
            finish_reason="stop",
        )

    async def generate_stream(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream a mock response word by word."""
        result = await self.generate(prompt, options=options)
        for word in result.text.split():
            yield word + " "
