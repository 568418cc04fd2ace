"""Streaming speech-to-text for live call audio.

A transcription channel is owned by exactly one call session. Audio is pushed
without blocking; transcript and error events come back through ``events()``
so the session can consume them from its own event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agents.errors import TranscriptionFailedError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

_CLOSE_STREAM = object()


@dataclass(frozen=True, slots=True)
class TranscriptionConfig:
    encoding: str = "mulaw"
    sample_rate: int = 8000
    channels: int = 1
    language: str = "en-US"
    punctuate: bool = True
    interim_results: bool = True
    model: str = "nova-2-phonecall"
    endpointing_ms: int = 300
    utterance_end_ms: int = 1000
    smart_format: bool = True

    def query_params(self) -> dict[str, str]:
        return {
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
            "language": self.language,
            "punctuate": str(self.punctuate).lower(),
            "interim_results": str(self.interim_results).lower(),
            "model": self.model,
            "endpointing": str(self.endpointing_ms),
            "utterance_end_ms": str(self.utterance_end_ms),
            "smart_format": str(self.smart_format).lower(),
        }


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    text: str
    is_final: bool
    speech_final: bool = False

    @property
    def kind(self) -> str:
        return "final" if self.is_final else "interim"


@dataclass(frozen=True, slots=True)
class TranscriptionErrorEvent:
    """Provider-side problem reported out of band.

    ``fatal`` means the provider connection is gone and no further transcripts
    will arrive on this channel.
    """

    message: str
    fatal: bool = False


TranscriptionEvent = Union[TranscriptEvent, TranscriptionErrorEvent]


def parse_provider_message(raw: str | bytes) -> TranscriptionEvent | None:
    """Map one Deepgram live message to a channel event (``None`` for informational messages)."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError) as exc:
        return TranscriptionErrorEvent(f"Unparseable provider message: {exc}")
    if not isinstance(data, dict):
        return TranscriptionErrorEvent("Provider message is not a JSON object")

    message_type = data.get("type")
    if message_type == "Results":
        channel = data.get("channel") or {}
        if not isinstance(channel, dict):
            return TranscriptionErrorEvent("Results message has a malformed channel")
        alternatives = channel.get("alternatives") or [{}]
        if not isinstance(alternatives, list) or not isinstance(alternatives[0], dict):
            return TranscriptionErrorEvent("Results message has no usable alternatives")
        text = str(alternatives[0].get("transcript") or "")
        return TranscriptEvent(
            text=text,
            is_final=bool(data.get("is_final")),
            speech_final=bool(data.get("speech_final")),
        )
    if message_type == "UtteranceEnd":
        # Endpoint reached without a speech_final result: flush what was finalized so far.
        return TranscriptEvent(text="", is_final=True, speech_final=True)
    if message_type == "Error":
        detail = data.get("description") or data.get("message") or "unknown error"
        return TranscriptionErrorEvent(f"Provider error: {detail}")
    if message_type in {"Metadata", "SpeechStarted"}:
        LOGGER.debug("Transcription %s: %s", message_type, data)
        return None

    LOGGER.debug("Ignoring transcription message of type %r", message_type)
    return None


class TranscriptionChannel(ABC):
    """Interface for a per-call streaming transcription connection."""

    @abstractmethod
    async def open(self, config: TranscriptionConfig) -> None:
        """Connect to the provider. Raises ``TranscriptionFailedError`` when it cannot."""

    @abstractmethod
    def push(self, chunk: bytes) -> None:
        """Queue an audio chunk for the provider without blocking."""

    @abstractmethod
    def events(self) -> AsyncIterator[TranscriptionEvent]:
        """Transcript and error events, ending once the channel is closed."""

    @abstractmethod
    async def close(self) -> None:
        """Gracefully finish the stream. Safe to call more than once."""

    @property
    @abstractmethod
    def closed(self) -> bool: ...


class DeepgramTranscriptionChannel(TranscriptionChannel):
    """Deepgram live transcription over a WebSocket."""

    def __init__(
        self,
        api_key: str,
        *,
        keepalive_seconds: float = 5.0,
        close_timeout_seconds: float = 3.0,
        url: str = DEEPGRAM_LISTEN_URL,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._api_key = api_key
        self._keepalive_seconds = keepalive_seconds
        self._close_timeout_seconds = close_timeout_seconds
        self._url = url
        self._connect = connect

        self._ws: Any = None
        self._outbox: asyncio.Queue[Any] = asyncio.Queue()
        self._events: asyncio.Queue[TranscriptionEvent | None] = asyncio.Queue()
        self._sender: asyncio.Task | None = None
        self._receiver: asyncio.Task | None = None
        self._closing = False

    @property
    def closed(self) -> bool:
        if self._closing:
            return True
        return self._receiver is not None and self._receiver.done()

    async def open(self, config: TranscriptionConfig) -> None:
        if self._ws is not None:
            raise RuntimeError("Transcription channel is already open.")

        url = f"{self._url}?{urlencode(config.query_params())}"
        try:
            self._ws = await self._connect(
                url,
                additional_headers={"Authorization": f"Token {self._api_key}"},
                ping_interval=20,
                ping_timeout=20,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TranscriptionFailedError(f"Could not connect to Deepgram: {exc}") from exc

        LOGGER.info("Transcription stream opened (%s, %s Hz, %s)", config.encoding, config.sample_rate, config.language)
        self._sender = asyncio.create_task(self._send_loop())
        self._receiver = asyncio.create_task(self._receive_loop())

    def push(self, chunk: bytes) -> None:
        if self._closing or self._ws is None or not chunk:
            return
        self._outbox.put_nowait(chunk)

    async def events(self) -> AsyncIterator[TranscriptionEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True

        if self._ws is None:
            self._events.put_nowait(None)
            return

        self._outbox.put_nowait(_CLOSE_STREAM)
        # Give the provider a chance to flush final results before hanging up.
        await asyncio.wait(
            [task for task in (self._sender, self._receiver) if task is not None],
            timeout=self._close_timeout_seconds,
        )
        for task in (self._sender, self._receiver):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        try:
            await self._ws.close()
        except (OSError, WebSocketException) as exc:
            LOGGER.debug("Ignoring error while closing transcription socket: %s", exc)
        self._events.put_nowait(None)
        LOGGER.info("Transcription stream closed")

    async def _send_loop(self) -> None:
        try:
            while True:
                try:
                    item = await asyncio.wait_for(self._outbox.get(), timeout=self._keepalive_seconds)
                except asyncio.TimeoutError:
                    # The provider hangs up after ~10s without audio.
                    await self._ws.send(json.dumps({"type": "KeepAlive"}))
                    continue

                if item is _CLOSE_STREAM:
                    await self._ws.send(json.dumps({"type": "CloseStream"}))
                    return
                await self._ws.send(item)
        except ConnectionClosed:
            LOGGER.debug("Transcription socket closed while sending")

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                event = parse_provider_message(message)
                if event is not None:
                    self._events.put_nowait(event)
        except ConnectionClosed as exc:
            if not self._closing:
                self._events.put_nowait(TranscriptionErrorEvent(f"Provider connection lost: {exc}", fatal=True))
            return
        except Exception as exc:
            LOGGER.exception("Transcription receiver failed")
            self._events.put_nowait(TranscriptionErrorEvent(f"Transcription receiver failed: {exc}", fatal=True))
            return

        if not self._closing:
            self._events.put_nowait(TranscriptionErrorEvent("Provider closed the stream", fatal=True))


def build_transcription_config() -> TranscriptionConfig:
    settings = get_settings()
    return TranscriptionConfig(
        language=settings.transcription_language,
        model=settings.deepgram_model,
        endpointing_ms=settings.transcription_endpointing_ms,
    )


def build_transcription_channel() -> TranscriptionChannel:
    """Factory returning a fresh, unopened channel for one call."""

    settings = get_settings()
    if not settings.deepgram_api_key:
        raise ValueError("Deepgram API key must be configured for transcription.")
    return DeepgramTranscriptionChannel(
        settings.deepgram_api_key,
        keepalive_seconds=settings.transcription_keepalive_seconds,
        close_timeout_seconds=settings.transcription_close_timeout_seconds,
    )
