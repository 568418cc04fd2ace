"""Per-call streaming orchestration between the media stream and the speech/LLM providers.

One orchestrator owns one :class:`CallSession`. Its event loop consumes a
single inbox fed by the media stream reader and the transcription channel, so
session state is only ever mutated from one place. Assistant turns run on a
separate worker task, one at a time: a caller utterance that is finalized
while the assistant is still speaking is queued and answered after the current
utterance's mark has been sent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass

from agents.errors import TranscriptionFailedError, TTSFailedError
from agents.history import ConversationHistory
from agents.responder import ResponseGenerator
from speech.transcriber import (
    TranscriptEvent,
    TranscriptionChannel,
    TranscriptionConfig,
    TranscriptionErrorEvent,
)
from speech.tts import BaseSynthesizer
from telephony.media_stream import (
    ConnectedEvent,
    DecodeFailure,
    MarkEvent,
    MediaEvent,
    MediaTransport,
    OutboundFrame,
    OutboundMark,
    OutboundMedia,
    StartEvent,
    StopEvent,
)
from telephony.registry import SessionRegistry
from telephony.session import CallSession, SessionState, SpeakingState

LOGGER = logging.getLogger(__name__)

_TRANSPORT_CLOSED = object()


@dataclass(frozen=True, slots=True)
class Turn:
    """One assistant utterance to produce: either scripted text or a reply to ``transcript``."""

    transcript: str | None = None
    text: str | None = None


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class CallSessionOrchestrator:
    """Owns one call's lifecycle: ``AWAITING_STREAM -> ACTIVE -> TERMINATED``."""

    def __init__(
        self,
        transport: MediaTransport,
        *,
        call_sid: str,
        system_prompt: str,
        responder: ResponseGenerator,
        synthesizer: BaseSynthesizer,
        transcription_factory: Callable[[], TranscriptionChannel],
        transcription_config: TranscriptionConfig | None = None,
        greeting_text: str,
        synthesis_timeout_seconds: float = 15.0,
        max_transcription_reopens: int = 1,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.session = CallSession(call_sid=call_sid, history=ConversationHistory(system_prompt))
        self._transport = transport
        self._responder = responder
        self._synthesizer = synthesizer
        self._transcription_factory = transcription_factory
        self._transcription_config = transcription_config or TranscriptionConfig()
        self._greeting_text = greeting_text
        self._synthesis_timeout_seconds = synthesis_timeout_seconds
        self._max_transcription_reopens = max_transcription_reopens
        self._registry = registry

        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._turns: asyncio.Queue[Turn] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._pump_task: asyncio.Task | None = None
        self._turn_task: asyncio.Task | None = None

    async def run(self) -> None:
        """Process the call until a stop event or disconnect, then release everything."""

        LOGGER.info("Media stream connected for call %s", self.session.label)
        self._reader_task = asyncio.create_task(self._read_transport())
        try:
            while self.session.state is not SessionState.TERMINATED:
                item = await self._inbox.get()
                await self._dispatch(item)
        finally:
            await self._terminate("connection closed")
            await _cancel(self._reader_task)

    async def _read_transport(self) -> None:
        try:
            async for event in self._transport.receive():
                self._inbox.put_nowait(event)
        except Exception:
            LOGGER.exception("Media stream reader failed for call %s", self.session.label)
        self._inbox.put_nowait(_TRANSPORT_CLOSED)

    async def _pump_transcription(self, channel: TranscriptionChannel) -> None:
        async for event in channel.events():
            self._inbox.put_nowait(event)

    async def _dispatch(self, item: object) -> None:
        if isinstance(item, MediaEvent):
            self._on_media(item)
        elif isinstance(item, TranscriptEvent):
            self._on_transcript(item)
        elif isinstance(item, StartEvent):
            await self._on_start(item)
        elif isinstance(item, StopEvent):
            await self._terminate("stop event")
        elif isinstance(item, MarkEvent):
            self.session.last_played_mark = item.name
            LOGGER.debug("Caller finished hearing %s on call %s", item.name, self.session.label)
        elif isinstance(item, TranscriptionErrorEvent):
            await self._on_transcription_error(item)
        elif isinstance(item, DecodeFailure):
            self.session.decode_failures += 1
        elif isinstance(item, ConnectedEvent):
            LOGGER.debug("Media stream handshake: protocol=%s version=%s", item.protocol, item.version)
        elif item is _TRANSPORT_CLOSED:
            await self._terminate("transport disconnected")
        else:
            LOGGER.warning("Ignoring unexpected session event %r", item)

    async def _on_start(self, event: StartEvent) -> None:
        session = self.session
        if session.state is not SessionState.AWAITING_STREAM:
            LOGGER.warning("Ignoring repeated start event for call %s", session.label)
            return

        session.stream_sid = event.stream_sid
        session.call_sid = event.call_sid or session.call_sid or event.custom_parameters.get("CallId", "")
        session.state = SessionState.ACTIVE
        LOGGER.info(
            "Media stream started for call %s (stream %s, format %s)",
            session.label,
            event.stream_sid,
            event.media_format or "unspecified",
        )

        if self._registry is not None:
            await self._registry.register(session)

        await self._open_transcription()
        self._turn_task = asyncio.create_task(self._turn_worker())
        self._turns.put_nowait(Turn(text=self._greeting_text))

    def _on_media(self, event: MediaEvent) -> None:
        session = self.session
        if session.state is not SessionState.ACTIVE:
            LOGGER.debug("Dropping media received before the stream started")
            return
        if event.track != "inbound":
            return
        session.media_frames_received += 1
        if session.transcription is not None:
            session.transcription.push(event.payload)

    def _on_transcript(self, event: TranscriptEvent) -> None:
        session = self.session
        if session.state is not SessionState.ACTIVE:
            return
        if not event.is_final:
            if event.text:
                LOGGER.debug("Interim transcript on call %s: %s", session.label, event.text)
            return

        text = event.text.strip()
        if text:
            session.pending_transcript.append(text)
        if not event.speech_final:
            return

        utterance = " ".join(session.pending_transcript).strip()
        session.pending_transcript.clear()
        if not utterance:
            return

        LOGGER.info("Caller on %s said: %s", session.label, utterance)
        if session.speaking_state is not SpeakingState.IDLE or not self._turns.empty():
            LOGGER.info("Assistant is still speaking on %s; queueing reply", session.label)
        self._turns.put_nowait(Turn(transcript=utterance))

    async def _on_transcription_error(self, event: TranscriptionErrorEvent) -> None:
        session = self.session
        LOGGER.warning("Transcription error on call %s: %s", session.label, event.message)
        if not event.fatal or session.state is not SessionState.ACTIVE:
            return

        await self._close_transcription()
        if session.transcription_reopens >= self._max_transcription_reopens:
            LOGGER.error("Transcription lost for call %s; not reopening again", session.label)
            return
        session.transcription_reopens += 1
        LOGGER.info("Reopening transcription for call %s (attempt %d)", session.label, session.transcription_reopens)
        await self._open_transcription()

    async def _open_transcription(self) -> None:
        try:
            channel = self._transcription_factory()
            await channel.open(self._transcription_config)
        except TranscriptionFailedError as exc:
            LOGGER.error("Could not open transcription for call %s: %s", self.session.label, exc.detail)
            return
        except Exception:
            LOGGER.exception("Could not create transcription channel for call %s", self.session.label)
            return
        self.session.transcription = channel
        self._pump_task = asyncio.create_task(self._pump_transcription(channel))

    async def _close_transcription(self) -> None:
        channel, self.session.transcription = self.session.transcription, None
        pump, self._pump_task = self._pump_task, None
        if channel is not None:
            await channel.close()
        await _cancel(pump)

    async def _turn_worker(self) -> None:
        while True:
            turn = await self._turns.get()
            try:
                await self._take_turn(turn)
            except Exception:
                LOGGER.exception("Assistant turn failed on call %s", self.session.label)
            finally:
                self.session.speaking_state = SpeakingState.IDLE

    async def _take_turn(self, turn: Turn) -> None:
        session = self.session
        session.speaking_state = SpeakingState.SYNTHESIZING
        if turn.transcript is not None:
            text = await self._responder.generate(session.history, turn.transcript)
        else:
            text = turn.text or ""
        await self._speak(text)

    async def _speak(self, text: str) -> None:
        session = self.session
        try:
            await asyncio.wait_for(self._relay(text), timeout=self._synthesis_timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Synthesis timed out after %.1fs on call %s; ending utterance",
                self._synthesis_timeout_seconds,
                session.label,
            )
        except TTSFailedError as exc:
            LOGGER.warning("Synthesis failed on call %s; abandoning utterance: %s", session.label, exc.detail)

        # The far end waits for the mark, so it goes out even when synthesis failed.
        session.utterances_sent += 1
        await self._send(OutboundMark(stream_sid=session.stream_sid or "", name=f"utterance-{session.utterances_sent}"))

    async def _relay(self, text: str) -> None:
        session = self.session
        produced = dropped = 0
        chunks = self._synthesizer.synthesize(text)
        async with aclosing(chunks):
            async for chunk in chunks:
                session.speaking_state = SpeakingState.SENDING
                produced += 1
                if not await self._send(OutboundMedia(stream_sid=session.stream_sid or "", payload=chunk)):
                    dropped += 1
        if dropped:
            LOGGER.warning("Dropped %d of %d audio chunks on call %s", dropped, produced, session.label)

    async def _send(self, frame: OutboundFrame) -> bool:
        if not self.session.stream_sid:
            LOGGER.warning("No stream SID yet for call %s; dropping %s", self.session.label, type(frame).__name__)
            return False
        return await self._transport.send(frame)

    async def _terminate(self, reason: str) -> None:
        session = self.session
        if session.state is SessionState.TERMINATED:
            return
        session.state = SessionState.TERMINATED
        LOGGER.info("Ending session for call %s (%s)", session.label, reason)

        await _cancel(self._turn_task)
        self._turn_task = None
        while not self._turns.empty():
            self._turns.get_nowait()

        await self._close_transcription()
        session.history.reset()
        session.pending_transcript.clear()
        session.speaking_state = SpeakingState.IDLE

        if self._registry is not None:
            await self._registry.unregister(session)
