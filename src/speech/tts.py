"""Streaming text-to-speech in the telephony wire encoding (G.711 mu-law, 8 kHz)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx

from agents.errors import TTSFailedError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
DEEPGRAM_SPEAK_URL = "https://api.deepgram.com/v1/speak"


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers.

    ``synthesize`` returns a lazy, single-use sequence of audio chunks that can
    be written to the call as-is. The caller is responsible for signalling the
    end of the utterance once the sequence is exhausted.
    """

    @abstractmethod
    def synthesize(self, text: str) -> AsyncIterator[bytes]:
        """Stream mu-law audio chunks for ``text``."""


async def _stream_audio(
    provider: str,
    url: str,
    *,
    headers: dict[str, str],
    params: dict[str, Any],
    body: dict[str, Any],
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[bytes]:
    if not str(body.get("text", "")).strip():
        return
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            async with client.stream("POST", url, headers=headers, params=params, json=body) as response:
                if response.status_code != 200:
                    error_body = await response.aread()
                    raise TTSFailedError(
                        f"{provider} synthesis failed with HTTP {response.status_code}: {error_body[:200]!r}"
                    )
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
    except (httpx.HTTPError, httpx.StreamError) as exc:
        raise TTSFailedError(f"{provider} synthesis request failed: {exc}") from exc


class ElevenLabsSynthesizer(BaseSynthesizer):
    """ElevenLabs streaming endpoint with ``ulaw_8000`` output."""

    output_format = "ulaw_8000"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        if not settings.elevenlabs_api_key:
            raise ValueError("ElevenLabs API key must be configured.")

        self._api_key = settings.elevenlabs_api_key
        self._voice_id = settings.elevenlabs_voice_id
        self._model_id = settings.elevenlabs_model_id
        self._timeout = settings.synthesis_timeout_seconds
        self._transport = transport

    def synthesize(self, text: str) -> AsyncIterator[bytes]:
        return _stream_audio(
            "ElevenLabs",
            f"{ELEVENLABS_BASE_URL}/text-to-speech/{self._voice_id}/stream",
            headers={"xi-api-key": self._api_key, "Accept": "audio/basic"},
            params={"output_format": self.output_format, "optimize_streaming_latency": 3},
            body={"text": text, "model_id": self._model_id},
            timeout=self._timeout,
            transport=self._transport,
        )


class DeepgramSynthesizer(BaseSynthesizer):
    """Deepgram Aura with raw (container-less) mu-law output."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        if not settings.deepgram_api_key:
            raise ValueError("Deepgram API key must be configured.")

        self._api_key = settings.deepgram_api_key
        self._model = settings.deepgram_tts_model
        self._timeout = settings.synthesis_timeout_seconds
        self._transport = transport

    def synthesize(self, text: str) -> AsyncIterator[bytes]:
        return _stream_audio(
            "Deepgram",
            DEEPGRAM_SPEAK_URL,
            headers={"Authorization": f"Token {self._api_key}"},
            params={
                "model": self._model,
                "encoding": "mulaw",
                "sample_rate": 8000,
                "container": "none",
            },
            body={"text": text},
            timeout=self._timeout,
            transport=self._transport,
        )


def build_synthesizer() -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = get_settings()
    if settings.tts_provider == "elevenlabs":
        return ElevenLabsSynthesizer()
    if settings.tts_provider == "deepgram":
        return DeepgramSynthesizer()
    raise ValueError(f"Unsupported TTS provider: {settings.tts_provider}")
