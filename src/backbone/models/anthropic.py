"""Anthropic (Claude) model adapter."""

import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from backbone.core.errors import from_anthropic_error
from backbone.models.protocol import (
    GenerateOptions,
    GenerateResult,
    TokenUsage,
    sanitize_llm_content,
)

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic

API_KEY_ENV = "ANTHROPIC_API_KEY"


@dataclass
class AnthropicModel:
    """Anthropic Claude model adapter.

    Errors from the SDK are translated to ProviderError / RateLimitError.
    """

    model: str = "claude-sonnet-4-20250514"
    api_key: str | None = None
    max_tokens: int = 4096
    _client: "AsyncAnthropic | None" = field(default=None, init=False, repr=False)

    @property
    def model_id(self) -> str:
        return self.model

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key or os.environ.get(API_KEY_ENV))

    def _get_client(self) -> "AsyncAnthropic":
        """Get or create the Anthropic client."""
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    def _build_kwargs(self, prompt: str, opts: GenerateOptions) -> dict:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": opts.max_tokens or self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if opts.system_prompt:
            kwargs["system"] = opts.system_prompt
        if opts.temperature != 0.7:
            kwargs["temperature"] = opts.temperature
        if opts.stop_sequences:
            kwargs["stop_sequences"] = list(opts.stop_sequences)
        return kwargs

    async def generate(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> GenerateResult:
        """Generate a response using Claude."""
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, options or GenerateOptions())

        try:
            response = await client.messages.create(**kwargs)
        except Exception as e:
            raise from_anthropic_error(e, self.model) from e

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )

        return GenerateResult(
            content=sanitize_llm_content(content),
            model=response.model,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            finish_reason=response.stop_reason,
        )

    async def generate_stream(
        self,
        prompt: str,
        *,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream a response using Claude."""
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, options or GenerateOptions())

        try:
            async with client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield sanitize_llm_content(text) or ""
        except Exception as e:
            raise from_anthropic_error(e, self.model) from e
