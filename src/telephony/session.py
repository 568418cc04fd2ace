from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from agents.history import ConversationHistory
from speech.transcriber import TranscriptionChannel


class SessionState(str, Enum):
    AWAITING_STREAM = "awaiting_stream"
    ACTIVE = "active"
    TERMINATED = "terminated"


class SpeakingState(str, Enum):
    IDLE = "idle"
    SYNTHESIZING = "synthesizing"
    SENDING = "sending"


@dataclass
class CallSession:
    """All mutable state belonging to one phone call.

    Nothing here is shared with other calls; the orchestrator that owns the
    session is the only writer.
    """

    call_sid: str
    history: ConversationHistory
    stream_sid: str | None = None
    transcription: TranscriptionChannel | None = None
    state: SessionState = SessionState.AWAITING_STREAM
    speaking_state: SpeakingState = SpeakingState.IDLE
    pending_transcript: list[str] = field(default_factory=list)
    utterances_sent: int = 0
    last_played_mark: str | None = None
    media_frames_received: int = 0
    decode_failures: int = 0
    transcription_reopens: int = 0

    @property
    def label(self) -> str:
        return self.call_sid or self.stream_sid or "unknown"
