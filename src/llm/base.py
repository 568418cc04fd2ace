"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable


class BaseLLMClient(ABC):
    """Abstract base class for chat completion providers."""

    @abstractmethod
    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float = 0.4,
    ) -> str:
        """Return the assistant reply for an ordered list of role-tagged messages."""
