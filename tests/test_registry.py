from __future__ import annotations

import asyncio

from agents.history import ConversationHistory
from telephony.registry import SessionRegistry
from telephony.session import CallSession


def _session(call_sid: str) -> CallSession:
    return CallSession(call_sid=call_sid, history=ConversationHistory("persona"))


def test_register_lookup_and_unregister():
    async def scenario():
        registry = SessionRegistry()
        first, second = _session("CA1"), _session("CA2")
        await registry.register(first)
        await registry.register(second)

        assert await registry.get("CA1") is first
        assert await registry.count() == 2

        await registry.unregister(first)
        assert await registry.get("CA1") is None
        assert await registry.count() == 1

    asyncio.run(scenario())


def test_stale_session_does_not_unregister_its_replacement():
    async def scenario():
        registry = SessionRegistry()
        stale, fresh = _session("CA1"), _session("CA1")
        await registry.register(stale)
        await registry.register(fresh)

        await registry.unregister(stale)

        assert await registry.get("CA1") is fresh

    asyncio.run(scenario())


def test_sessions_without_call_sid_are_not_indexed():
    async def scenario():
        registry = SessionRegistry()
        first, second = _session(""), _session("")
        await registry.register(first)
        await registry.register(second)

        assert await registry.count() == 0
        await registry.unregister(first)
        assert await registry.count() == 0

    asyncio.run(scenario())
