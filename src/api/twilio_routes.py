"""Twilio Voice integration.

This module provides:
- Outbound call creation and the status-callback postback.
- The voice webhook returning TwiML that opens a bidirectional media stream.
- The media stream WebSocket, handed to a per-call orchestrator.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState

from agents.errors import AssistantError
from api.dependencies import OrchestratorFactory, get_orchestrator_factory, get_session_registry
from api.schemas import CreateCallRequest, CreateCallResponse
from api.twiml import stream_url, twiml_connect_stream, twiml_response
from config.settings import get_settings
from integrations.twilio_client import build_twilio_client, get_twilio_config, place_outbound_call
from telephony.media_stream import WebSocketMediaTransport
from telephony.registry import SessionRegistry

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

STREAM_PATH = "/stream"


def get_twilio_client():
    return build_twilio_client()


def get_twilio_cfg():
    return get_twilio_config()


async def _form_or_query(request: Request) -> dict[str, str]:
    params = {key: str(value) for key, value in request.query_params.items()}
    if request.method == "POST":
        form = await request.form()
        params.update({key: str(value) for key, value in form.items()})
    return params


@router.post("/create-call", response_model=CreateCallResponse, response_model_by_alias=True)
async def create_call(
    payload: CreateCallRequest,
    twilio_client=Depends(get_twilio_client),
    cfg=Depends(get_twilio_cfg),
) -> CreateCallResponse:
    to_number = (payload.to or "").strip()
    if not to_number:
        raise HTTPException(status_code=400, detail='Missing "to" parameter')

    try:
        call_sid = await place_outbound_call(twilio_client, cfg, to_number=to_number)
    except AssistantError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return CreateCallResponse(call_sid=call_sid)


@router.post("/status", response_class=PlainTextResponse)
async def status_callback(
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
) -> str:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "")
    call_status = str(form.get("CallStatus") or "")
    live = bool(call_sid) and (await registry.get(call_sid)) is not None
    LOGGER.info(
        "Status callback for call %s: %s (answered_by=%s, live_session=%s)",
        call_sid or "unknown",
        call_status or "unknown",
        form.get("AnsweredBy") or "n/a",
        live,
    )
    return "Status Callback Received"


@router.api_route("/voice", methods=["GET", "POST"])
async def voice_webhook(request: Request) -> Response:
    settings = get_settings()
    params = await _form_or_query(request)
    call_sid = params.get("CallSid") or params.get("CallId") or ""

    url = stream_url(settings.public_ws_url, path=STREAM_PATH, call_sid=call_sid)
    LOGGER.info("Voice webhook for call %s; streaming to %s", call_sid or "unknown", url)
    return twiml_response(
        twiml_connect_stream(url=url, call_sid=call_sid, pause_seconds=settings.twiml_pause_seconds)
    )


@router.websocket(STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> None:
    await websocket.accept()
    call_sid = websocket.query_params.get("CallId") or websocket.query_params.get("callSid") or ""

    orchestrator = factory(WebSocketMediaTransport(websocket), call_sid)
    try:
        await orchestrator.run()
    except Exception:
        LOGGER.exception("Call session crashed for call %s", orchestrator.session.label)
    finally:
        if (
            websocket.application_state == WebSocketState.CONNECTED
            and websocket.client_state == WebSocketState.CONNECTED
        ):
            await websocket.close()
        LOGGER.info("WebSocket connection closed for call %s", orchestrator.session.label)
