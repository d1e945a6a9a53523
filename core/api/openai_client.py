"""
core.api.openai_client

Thin async wrapper around the OpenAI Chat Completions API for RepCoach.

Used by:
  - core/coach/generators.py (workout plans and insights answers)
  - cli/main.py (one-shot generation)
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from configs.settings import settings


logger = logging.getLogger(__name__)


class OpenAIChatBackend:
    """Chat backend used by the content generators.

    Exposes exactly the two calls the generators need:

        await backend.complete(prompt) -> str
        async for chunk in backend.stream(messages): ...

    There is no retry or backoff here: every call goes upstream exactly
    once and errors (OpenAIError and friends) propagate to the caller.

    The underlying AsyncOpenAI client is created on first use so that the
    API key is only required once a request is actually made.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.7,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model or settings.openai_model
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            )
        return self._client

    async def complete(self, prompt: str) -> str:
        """Send a single user prompt and return the model text.

        Raises
        ------
        OpenAIError
            If the API call fails.
        RuntimeError
            If the response has no choices.
        """
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
        )

        if not completion.choices:
            raise RuntimeError("Empty response from OpenAI API.")

        return completion.choices[0].message.content or ""

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """Stream a chat completion, yielding non-empty content fragments."""
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            stream=True,
        )

        chunk_count = 0
        async for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                chunk_count += 1
                yield content

        logger.debug("[OPENAI] Stream completed with %d chunks", chunk_count)
