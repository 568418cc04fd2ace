"""Next-utterance generation for a live call."""

from __future__ import annotations

import asyncio
import logging

from agents.errors import LLMFailedError
from agents.history import ConversationHistory
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class ResponseGenerator:
    """Turns a finalized caller transcript into the assistant's reply.

    Every call to :meth:`generate` appends exactly one user entry and exactly
    one assistant entry to the history. Provider failures never propagate: the
    fallback line is spoken and recorded instead, so the conversation stays
    coherent for the next turn.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        *,
        fallback_text: str,
        max_tokens: int = 150,
        temperature: float = 0.4,
        timeout_seconds: float = 8.0,
    ) -> None:
        self._llm = llm
        self._fallback_text = fallback_text
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    @property
    def fallback_text(self) -> str:
        return self._fallback_text

    async def generate(self, history: ConversationHistory, utterance: str) -> str:
        history.add_user(utterance)

        try:
            reply = await asyncio.wait_for(
                self._llm.chat(
                    history.messages(),
                    max_tokens=self._max_tokens,
                    temperature=self._temperature,
                ),
                timeout=self._timeout_seconds,
            )
            reply = (reply or "").strip()
            if not reply:
                raise LLMFailedError("LLM returned empty content.")
        except asyncio.TimeoutError:
            LOGGER.warning("Completion timed out after %.1fs; using fallback", self._timeout_seconds)
            reply = self._fallback_text
        except Exception as exc:
            LOGGER.warning("Completion failed (%s: %s); using fallback", type(exc).__name__, exc)
            reply = self._fallback_text

        history.add_assistant(reply)
        return reply
