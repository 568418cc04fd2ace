from __future__ import annotations

import asyncio
import logging

from telephony.session import CallSession

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory index of live call sessions keyed by call SID.

    Note: This is a single-process index. Each session's state stays inside its
    own orchestrator; the registry only lets the control plane look calls up.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}

    async def register(self, session: CallSession) -> None:
        if not session.call_sid:
            LOGGER.warning("Not indexing session without a call SID (stream %s)", session.stream_sid)
            return
        async with self._lock:
            existing = self._sessions.get(session.call_sid)
            if existing is not None and existing is not session:
                LOGGER.warning("Replacing live session for call %s", session.call_sid)
            self._sessions[session.call_sid] = session

    async def unregister(self, session: CallSession) -> None:
        async with self._lock:
            if self._sessions.get(session.call_sid) is session:
                del self._sessions[session.call_sid]

    async def get(self, call_sid: str) -> CallSession | None:
        async with self._lock:
            return self._sessions.get(call_sid)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


GLOBAL_SESSION_REGISTRY = SessionRegistry()
