"""OpenAI/Azure OpenAI client wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from openai import AsyncOpenAI

from agents.errors import LLMFailedError
from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion API (or any compatible endpoint)."""

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        settings = get_settings()
        if client is None:
            if not settings.llm_api_key:
                raise ValueError("LLM API key must be configured for OpenAI client.")
            # Retries are left to the caller; a live call cannot wait for backoff.
            client = AsyncOpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_endpoint or None,
                max_retries=0,
            )

        self._client = client
        self._model = settings.llm_model

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float = 0.4,
    ) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            raise LLMFailedError("LLM response contains no choices.")
        return response.choices[0].message.content or ""
