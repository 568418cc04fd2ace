from __future__ import annotations

import base64
import json

import pytest

from agents.errors import FrameDecodeError
from telephony.media_stream import (
    ConnectedEvent,
    MarkEvent,
    MediaEvent,
    OutboundClear,
    OutboundMark,
    OutboundMedia,
    StartEvent,
    StopEvent,
    decode_frame,
    encode_frame,
)


def _start_frame() -> str:
    return json.dumps(
        {
            "event": "start",
            "sequenceNumber": "1",
            "streamSid": "MZ123",
            "start": {
                "accountSid": "AC1",
                "streamSid": "MZ123",
                "callSid": "CA1",
                "tracks": ["inbound"],
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
                "customParameters": {"CallId": "CA1"},
            },
        }
    )


def test_decode_start_binds_call_and_stream_ids():
    event = decode_frame(_start_frame())

    assert isinstance(event, StartEvent)
    assert event.call_sid == "CA1"
    assert event.stream_sid == "MZ123"
    assert event.tracks == ("inbound",)
    assert event.media_format["sampleRate"] == 8000
    assert event.custom_parameters == {"CallId": "CA1"}


def test_decode_media_preserves_payload_bytes():
    raw = bytes(range(256))
    frame = json.dumps(
        {
            "event": "media",
            "streamSid": "MZ123",
            "media": {
                "track": "inbound",
                "chunk": "2",
                "timestamp": "40",
                "payload": base64.b64encode(raw).decode("ascii"),
            },
        }
    )

    event = decode_frame(frame)

    assert isinstance(event, MediaEvent)
    assert event.payload == raw
    assert event.track == "inbound"
    assert event.chunk == 2
    assert event.timestamp == 40


def test_decode_stop_mark_and_connected():
    stop = decode_frame(json.dumps({"event": "stop", "streamSid": "MZ1", "stop": {"callSid": "CA1"}}))
    mark = decode_frame(json.dumps({"event": "mark", "streamSid": "MZ1", "mark": {"name": "utterance-1"}}))
    connected = decode_frame(json.dumps({"event": "connected", "protocol": "Call", "version": "1.0.0"}))

    assert stop == StopEvent(call_sid="CA1")
    assert mark == MarkEvent(name="utterance-1")
    assert connected == ConnectedEvent(protocol="Call", version="1.0.0")


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"event": "dance"}),
        json.dumps({"event": "media"}),
        json.dumps({"event": "media", "media": {"payload": "%%% not base64 %%%"}}),
        json.dumps({"event": "media", "media": {"track": "inbound"}}),
        json.dumps({"event": "start", "start": {"callSid": "CA1"}}),
        json.dumps({"event": "mark", "mark": {}}),
    ],
)
def test_decode_rejects_malformed_frames(frame):
    with pytest.raises(FrameDecodeError):
        decode_frame(frame)


def test_encode_outbound_frames_are_tagged_with_stream_sid():
    media = json.loads(encode_frame(OutboundMedia(stream_sid="MZ9", payload=b"\x00\xff\x7f")))
    mark = json.loads(encode_frame(OutboundMark(stream_sid="MZ9", name="utterance-3")))
    clear = json.loads(encode_frame(OutboundClear(stream_sid="MZ9")))

    assert media == {"event": "media", "streamSid": "MZ9", "media": {"payload": "AP9/"}}
    assert base64.b64decode(media["media"]["payload"]) == b"\x00\xff\x7f"
    assert mark == {"event": "mark", "streamSid": "MZ9", "mark": {"name": "utterance-3"}}
    assert clear == {"event": "clear", "streamSid": "MZ9"}
