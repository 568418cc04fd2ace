"""Chat completions against a self-hosted, OpenAI-compatible server (vLLM, TGI)."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from agents.errors import LLMFailedError
from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


def _reply_text(data: Any) -> str:
    if not isinstance(data, dict) or not data.get("choices"):
        raise LLMFailedError("LLM response contains no choices.")
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMFailedError(f"Malformed LLM response: {exc}") from exc


class VLLMClient(BaseLLMClient):
    """Short spoken replies from a self-hosted model.

    A fresh connection is opened per turn; turns are seconds apart and a call
    may outlive any pooled connection the server keeps.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")

        self._url = settings.llm_endpoint.rstrip("/") + CHAT_COMPLETIONS_PATH
        self._model = settings.llm_model
        self._headers = {"Content-Type": "application/json"}
        if settings.llm_api_key:
            self._headers["Authorization"] = f"Bearer {settings.llm_api_key}"
        self._timeout = settings.completion_timeout_seconds
        self._transport = transport

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float = 0.4,
    ) -> str:
        body = {
            "model": self._model,
            "messages": list(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=body, headers=self._headers)
        response.raise_for_status()

        reply = _reply_text(response.json())
        LOGGER.debug("Self-hosted completion returned %d characters", len(reply))
        return reply
