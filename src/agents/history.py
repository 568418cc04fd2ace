from __future__ import annotations

from collections.abc import Iterator
from typing import Literal

Role = Literal["system", "user", "assistant"]


class ConversationHistory:
    """Ordered role/content turns for one call, seeded with the persona prompt.

    The first entry is always the system prompt. Entries are only ever
    appended; ``reset`` drops everything after the system entry.
    """

    def __init__(self, system_prompt: str) -> None:
        self._system_prompt = system_prompt
        self._entries: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]

    def append(self, role: Role, content: str) -> None:
        if role == "system":
            raise ValueError("The system entry is fixed; only user/assistant turns may be appended.")
        self._entries.append({"role": role, "content": content})

    def add_user(self, content: str) -> None:
        self.append("user", content)

    def add_assistant(self, content: str) -> None:
        self.append("assistant", content)

    def reset(self) -> None:
        self._entries = [{"role": "system", "content": self._system_prompt}]

    def messages(self) -> list[dict[str, str]]:
        """Return a copy suitable for a chat completion request."""

        return [dict(entry) for entry in self._entries]

    def count(self, role: Role) -> int:
        return sum(1 for entry in self._entries if entry["role"] == role)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[dict[str, str]]:
        return iter(self.messages())

    def __getitem__(self, index: int) -> dict[str, str]:
        return dict(self._entries[index])
