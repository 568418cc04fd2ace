from __future__ import annotations

import asyncio
import base64

from twilio.base.exceptions import TwilioRestException

from agents.responder import ResponseGenerator
from integrations.twilio_client import TwilioConfig
from llm.base import BaseLLMClient
from speech.transcriber import TranscriptionChannel
from speech.tts import BaseSynthesizer
from telephony.orchestrator import CallSessionOrchestrator
from telephony.registry import SessionRegistry


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.params: dict = {}

    def create(self, **params):
        self.params = params
        if self.error is not None:
            raise self.error
        return FakeTwilioCall("CA123")


class FakeTwilioClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = FakeTwilioCalls(error)


def _twilio_cfg() -> TwilioConfig:
    return TwilioConfig(
        account_sid="AC123",
        auth_token="token",
        from_number="+15005550006",
        public_base_url="https://example.com",
    )


def _override_twilio(app, client: FakeTwilioClient) -> None:
    import api.twilio_routes as twilio_routes

    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: client
    app.dependency_overrides[twilio_routes.get_twilio_cfg] = _twilio_cfg


def test_create_call_places_outbound_call(app, client):
    fake = FakeTwilioClient()
    _override_twilio(app, fake)

    resp = client.post("/create-call", json={"to": "+14155550100"})

    assert resp.status_code == 200
    assert resp.json() == {"callSid": "CA123"}
    params = fake.calls.params
    assert params["to"] == "+14155550100"
    assert params["from_"] == "+15005550006"
    assert params["url"] == "https://example.com/voice"
    assert params["status_callback"] == "https://example.com/status"
    assert params["status_callback_method"] == "POST"
    assert params["status_callback_event"] == ["initiated", "ringing", "answered", "completed"]
    assert params["machine_detection"] == "Enable"


def test_create_call_requires_destination(app, client):
    fake = FakeTwilioClient()
    _override_twilio(app, fake)

    resp = client.post("/create-call", json={})

    assert resp.status_code == 400
    assert resp.json()["detail"] == 'Missing "to" parameter'
    assert fake.calls.params == {}


def test_create_call_maps_provider_rejection_to_502(app, client):
    error = TwilioRestException(400, "/Calls", msg="The 'To' number is not a valid phone number.", code=21211)
    _override_twilio(app, FakeTwilioClient(error=error))

    resp = client.post("/create-call", json={"to": "+1"})

    assert resp.status_code == 502


def test_create_call_without_twilio_credentials_is_503(client):
    resp = client.post("/create-call", json={"to": "+14155550100"})

    assert resp.status_code == 503
    assert "not configured" in resp.json()["detail"]


def test_status_callback_acknowledges(client):
    resp = client.post("/status", data={"CallSid": "CA1", "CallStatus": "ringing", "AnsweredBy": "human"})

    assert resp.status_code == 200
    assert resp.text == "Status Callback Received"


def test_voice_webhook_connects_bidirectional_stream(client):
    resp = client.get("/voice", params={"CallSid": "CA9"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/xml")
    assert "<Connect>" in resp.text
    assert '<Stream url="wss://example.test/stream?CallId=CA9">' in resp.text
    assert '<Parameter name="CallId" value="CA9" />' in resp.text
    assert '<Pause length="60" />' in resp.text


def test_voice_webhook_accepts_form_post(client):
    resp = client.post("/voice", data={"CallSid": "CA10"})

    assert resp.status_code == 200
    assert "CallId=CA10" in resp.text


def test_plain_routes(client):
    assert client.get("/").text == "Hello World!"
    assert client.get("/ws").text == "WebSocket server is running"
    health = client.get("/health").json()
    assert health == {"status": "ok", "active_calls": 0}


class SilentChannel(TranscriptionChannel):
    def __init__(self) -> None:
        self._done = asyncio.Event()

    async def open(self, config) -> None:
        return None

    def push(self, chunk: bytes) -> None:
        return None

    async def events(self):
        await self._done.wait()
        return
        yield

    async def close(self) -> None:
        self._done.set()

    @property
    def closed(self) -> bool:
        return self._done.is_set()


class OneChunkSynthesizer(BaseSynthesizer):
    def synthesize(self, text: str):
        return self._stream()

    async def _stream(self):
        yield b"\xff" * 160


class UnusedLLM(BaseLLMClient):
    async def chat(self, messages, *, max_tokens, temperature=0.4) -> str:
        return "unused"


def test_media_stream_websocket_speaks_greeting(app, client):
    import api.dependencies as deps

    registry = SessionRegistry()
    created: list[CallSessionOrchestrator] = []

    def factory(transport, call_sid):
        orchestrator = CallSessionOrchestrator(
            transport,
            call_sid=call_sid,
            system_prompt="persona",
            responder=ResponseGenerator(UnusedLLM(), fallback_text="fallback"),
            synthesizer=OneChunkSynthesizer(),
            transcription_factory=SilentChannel,
            greeting_text="Hello!",
            registry=registry,
        )
        created.append(orchestrator)
        return orchestrator

    app.dependency_overrides[deps.get_orchestrator_factory] = lambda: factory

    with client.websocket_connect("/stream?CallId=CA9") as ws:
        ws.send_json({"event": "connected", "protocol": "Call", "version": "1.0.0"})
        ws.send_json(
            {
                "event": "start",
                "streamSid": "MZ9",
                "start": {"callSid": "CA9", "streamSid": "MZ9", "tracks": ["inbound"]},
            }
        )
        media = ws.receive_json()
        mark = ws.receive_json()
        ws.send_json({"event": "stop", "streamSid": "MZ9", "stop": {"callSid": "CA9"}})

    assert media["event"] == "media"
    assert media["streamSid"] == "MZ9"
    assert base64.b64decode(media["media"]["payload"]) == b"\xff" * 160
    assert mark == {"event": "mark", "streamSid": "MZ9", "mark": {"name": "utterance-1"}}
    assert created[0].session.call_sid == "CA9"
