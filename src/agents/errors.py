"""Domain-specific exceptions for call assistant operations.

These exceptions are safe to import from API layers without pulling in provider SDKs.
"""

from __future__ import annotations


class AssistantError(Exception):
    status_code: int = 500
    default_detail: str = "Assistant error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class FrameDecodeError(AssistantError):
    status_code = 400
    default_detail = "Malformed media stream frame."


class TranscriptionFailedError(AssistantError):
    status_code = 503
    default_detail = "Transcription stream failed."


class LLMFailedError(AssistantError):
    status_code = 503
    default_detail = "LLM request failed."


class TTSFailedError(AssistantError):
    status_code = 503
    default_detail = "Speech synthesis failed."


class TelephonyConfigError(AssistantError):
    status_code = 503
    default_detail = "Telephony provider is not configured."


class CallPlacementError(AssistantError):
    status_code = 502
    default_detail = "Telephony provider rejected the call."
