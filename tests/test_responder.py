from __future__ import annotations

import asyncio

from agents.history import ConversationHistory
from agents.responder import ResponseGenerator
from llm.base import BaseLLMClient

FALLBACK = "Sorry, could you repeat that?"


class ScriptedLLM(BaseLLMClient):
    def __init__(self, reply: str = "", *, error: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.requests: list[dict] = []

    async def chat(self, messages, *, max_tokens, temperature=0.4) -> str:
        self.requests.append({"messages": list(messages), "max_tokens": max_tokens, "temperature": temperature})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def _generate(llm: BaseLLMClient, history: ConversationHistory, utterance: str, **kwargs) -> str:
    responder = ResponseGenerator(llm, fallback_text=FALLBACK, **kwargs)
    return asyncio.run(responder.generate(history, utterance))


def test_reply_is_returned_and_recorded():
    llm = ScriptedLLM("  Where would you like to go?  ")
    history = ConversationHistory("persona")

    reply = _generate(llm, history, "book a flight", max_tokens=90, temperature=0.2)

    assert reply == "Where would you like to go?"
    assert llm.requests[0]["messages"] == [
        {"role": "system", "content": "persona"},
        {"role": "user", "content": "book a flight"},
    ]
    assert llm.requests[0]["max_tokens"] == 90
    assert llm.requests[0]["temperature"] == 0.2
    assert history.messages()[-1] == {"role": "assistant", "content": "Where would you like to go?"}


def test_provider_error_falls_back():
    history = ConversationHistory("persona")

    reply = _generate(ScriptedLLM(error=RuntimeError("503 from provider")), history, "hello")

    assert reply == FALLBACK
    assert history.messages()[1:] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": FALLBACK},
    ]


def test_timeout_falls_back():
    history = ConversationHistory("persona")

    reply = _generate(ScriptedLLM("too late", delay=1.0), history, "hello", timeout_seconds=0.05)

    assert reply == FALLBACK
    assert history.count("assistant") == 1


def test_empty_content_falls_back():
    history = ConversationHistory("persona")

    reply = _generate(ScriptedLLM("   "), history, "hello")

    assert reply == FALLBACK
    assert history.count("assistant") == 1


def test_each_turn_adds_one_user_and_one_assistant_entry():
    llm = ScriptedLLM("ok")
    history = ConversationHistory("persona")
    responder = ResponseGenerator(llm, fallback_text=FALLBACK)

    async def conversation():
        for utterance in ("one", "two", "three"):
            await responder.generate(history, utterance)

    asyncio.run(conversation())

    assert history.count("user") == 3
    assert history.count("assistant") == 3
    assert len(llm.requests[-1]["messages"]) == 6
