"""Twilio Media Streams framing.

Inbound frames are JSON text envelopes keyed by ``event``; audio travels as
base64 G.711 mu-law and is passed through byte-exact. Outbound frames are
addressed by the stream SID Twilio assigns in the ``start`` event.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Union

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from agents.errors import FrameDecodeError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    protocol: str = ""
    version: str = ""


@dataclass(frozen=True, slots=True)
class StartEvent:
    call_sid: str
    stream_sid: str
    tracks: tuple[str, ...] = ("inbound",)
    media_format: dict[str, Any] = field(default_factory=dict)
    custom_parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MediaEvent:
    payload: bytes
    track: str = "inbound"
    chunk: int | None = None
    timestamp: int | None = None


@dataclass(frozen=True, slots=True)
class StopEvent:
    call_sid: str = ""


@dataclass(frozen=True, slots=True)
class MarkEvent:
    name: str


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    """A frame that could not be decoded; the stream carries on after it."""

    reason: str
    raw: str = ""


InboundEvent = Union[ConnectedEvent, StartEvent, MediaEvent, StopEvent, MarkEvent]


@dataclass(frozen=True, slots=True)
class OutboundMedia:
    stream_sid: str
    payload: bytes


@dataclass(frozen=True, slots=True)
class OutboundMark:
    stream_sid: str
    name: str


@dataclass(frozen=True, slots=True)
class OutboundClear:
    stream_sid: str


OutboundFrame = Union[OutboundMedia, OutboundMark, OutboundClear]


def _require(container: dict[str, Any], key: str, event: str) -> Any:
    value = container.get(key)
    if value in (None, ""):
        raise FrameDecodeError(f"'{event}' frame is missing '{key}'")
    return value


def _optional_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def decode_frame(text: str) -> InboundEvent:
    """Decode one inbound envelope. Raises ``FrameDecodeError`` on anything malformed."""

    try:
        message = json.loads(text)
    except ValueError as exc:
        raise FrameDecodeError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise FrameDecodeError("Frame is not a JSON object")

    event = message.get("event")
    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict):
            raise FrameDecodeError("'media' frame has no media object")
        payload_b64 = _require(media, "payload", "media")
        try:
            payload = base64.b64decode(payload_b64, validate=True)
        except (binascii.Error, TypeError, ValueError) as exc:
            raise FrameDecodeError(f"Media payload is not valid base64: {exc}") from exc
        return MediaEvent(
            payload=payload,
            track=str(media.get("track") or "inbound"),
            chunk=_optional_int(media.get("chunk")),
            timestamp=_optional_int(media.get("timestamp")),
        )

    if event == "start":
        start = message.get("start")
        if not isinstance(start, dict):
            raise FrameDecodeError("'start' frame has no start object")
        stream_sid = message.get("streamSid") or start.get("streamSid")
        if not stream_sid:
            raise FrameDecodeError("'start' frame is missing 'streamSid'")
        return StartEvent(
            call_sid=str(start.get("callSid") or ""),
            stream_sid=str(stream_sid),
            tracks=tuple(start.get("tracks") or ("inbound",)),
            media_format=dict(start.get("mediaFormat") or {}),
            custom_parameters={str(k): str(v) for k, v in (start.get("customParameters") or {}).items()},
        )

    if event == "stop":
        stop = message.get("stop") or {}
        return StopEvent(call_sid=str(stop.get("callSid") or "") if isinstance(stop, dict) else "")

    if event == "mark":
        mark = message.get("mark")
        if not isinstance(mark, dict):
            raise FrameDecodeError("'mark' frame has no mark object")
        return MarkEvent(name=str(_require(mark, "name", "mark")))

    if event == "connected":
        return ConnectedEvent(
            protocol=str(message.get("protocol") or ""),
            version=str(message.get("version") or ""),
        )

    raise FrameDecodeError(f"Unsupported event {event!r}")


def encode_frame(frame: OutboundFrame) -> str:
    if isinstance(frame, OutboundMedia):
        return json.dumps(
            {
                "event": "media",
                "streamSid": frame.stream_sid,
                "media": {"payload": base64.b64encode(frame.payload).decode("ascii")},
            }
        )
    if isinstance(frame, OutboundMark):
        return json.dumps({"event": "mark", "streamSid": frame.stream_sid, "mark": {"name": frame.name}})
    if isinstance(frame, OutboundClear):
        return json.dumps({"event": "clear", "streamSid": frame.stream_sid})
    raise TypeError(f"Cannot encode {type(frame).__name__}")


class MediaTransport(ABC):
    """Duplex, message-framed connection to the telephony provider for one call."""

    @abstractmethod
    def receive(self) -> AsyncIterator[InboundEvent | DecodeFailure]:
        """Decoded inbound events; ends when the peer disconnects."""

    @abstractmethod
    async def send(self, frame: OutboundFrame) -> bool:
        """Write one frame. Returns ``False`` when the frame was dropped."""


class WebSocketMediaTransport(MediaTransport):
    """Media transport over an accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._disconnected = False

    @property
    def writable(self) -> bool:
        return (
            not self._disconnected
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> AsyncIterator[InboundEvent | DecodeFailure]:
        while not self._disconnected:
            try:
                message = await self._websocket.receive()
            except (WebSocketDisconnect, RuntimeError):
                break
            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None and message.get("bytes") is not None:
                try:
                    text = message["bytes"].decode("utf-8")
                except UnicodeDecodeError:
                    LOGGER.warning("Dropping binary frame that is not UTF-8 text")
                    yield DecodeFailure(reason="binary frame is not UTF-8 text")
                    continue
            if text is None:
                continue

            try:
                event: InboundEvent | DecodeFailure = decode_frame(text)
            except FrameDecodeError as exc:
                LOGGER.warning("Skipping malformed media stream frame: %s", exc.detail)
                event = DecodeFailure(reason=exc.detail, raw=text[:200])
            yield event

        self._disconnected = True

    async def send(self, frame: OutboundFrame) -> bool:
        if not self.writable:
            LOGGER.warning("Media stream not writable; dropping %s frame", type(frame).__name__)
            return False
        try:
            await self._websocket.send_text(encode_frame(frame))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._disconnected = True
            LOGGER.warning("Media stream write failed; dropping %s frame: %s", type(frame).__name__, exc)
            return False
        return True
