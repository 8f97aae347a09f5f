"""OpenAI-backed completion provider with retry.

Transient failures (rate limiting, connection problems, 5xx) are
retried with exponential backoff: 1s, 2s, 4s for the default of three
retries.  Other client errors fail immediately.  Whatever the cause,
the final failure surfaces as ``CompletionError`` so callers deal with a
single exception type.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import openai
from openai import AsyncOpenAI

from lorekeeper.config import EnrichmentConfig
from lorekeeper.errors import CompletionError
from lorekeeper.ports import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 120.0


def is_retryable(error: Exception) -> bool:
    """Rate limits, connection failures and server errors are transient."""
    if isinstance(error, (openai.RateLimitError, openai.APIConnectionError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code >= 500
    return False


class OpenAICompletionProvider:
    """``CompletionProvider`` backed by the chat completions API.

    Args:
        client: Async OpenAI client.  ``None`` creates one from the
            environment with the SDK's own retries disabled.
        model: Chat model name.
        max_retries: Retries after the first attempt.
        timeout: Per-request timeout in seconds.
        sleep: Awaitable used between attempts; replaceable in tests.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = "gpt-4o",
        max_retries: int = 3,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client if client is not None else AsyncOpenAI(max_retries=0)
        self.model = model
        self.max_retries = max_retries
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: EnrichmentConfig, client: AsyncOpenAI | None = None,
    ) -> OpenAICompletionProvider:
        """Provider using ``config.extraction_model``."""
        return cls(client, model=config.extraction_model)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        attempt = 0
        while True:
            try:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": request.system_prompt},
                        {"role": "user", "content": request.user_prompt},
                    ],
                    max_tokens=request.max_tokens,
                    temperature=request.temperature,
                    timeout=self.timeout,
                )
            except openai.OpenAIError as e:
                if attempt < self.max_retries and is_retryable(e):
                    wait_time = 2 ** attempt
                    logger.warning(
                        "Completion failed (%s), retrying in %ds (attempt %d/%d).",
                        type(e).__name__, wait_time, attempt + 1, self.max_retries,
                    )
                    await self._sleep(wait_time)
                    attempt += 1
                    continue
                logger.error("Completion failed after %d attempts: %s", attempt + 1, e)
                raise CompletionError(f"completion request failed: {e}") from e

            content = ""
            if response.choices:
                content = response.choices[0].message.content or ""
            tokens_used = response.usage.total_tokens if response.usage else 0
            logger.debug(
                "Completion by %s: %d tokens, %d chars.",
                self.model, tokens_used, len(content),
            )
            return CompletionResponse(content=content, tokens_used=tokens_used)
