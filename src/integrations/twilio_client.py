from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from agents.errors import CallPlacementError, TelephonyConfigError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ("initiated", "ringing", "answered", "completed")


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    public_base_url: str
    ring_timeout_seconds: int = 30
    machine_detection: str | None = "Enable"
    machine_detection_timeout_seconds: int = 30


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise TelephonyConfigError("Twilio credentials are not configured")
    if not settings.twilio_phone_number:
        raise TelephonyConfigError("Twilio from-number is not configured")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
        public_base_url=settings.public_base_url,
        ring_timeout_seconds=settings.twilio_ring_timeout_seconds,
        machine_detection=settings.twilio_machine_detection,
        machine_detection_timeout_seconds=settings.twilio_machine_detection_timeout_seconds,
    )


def build_twilio_client():
    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)


async def place_outbound_call(client: Any, cfg: TwilioConfig, *, to_number: str) -> str:
    """Create an outbound call that fetches its TwiML from ``/voice``. Returns the call SID."""

    from twilio.base.exceptions import TwilioException

    params: dict[str, Any] = {
        "to": to_number,
        "from_": cfg.from_number,
        "url": f"{cfg.public_base_url}/voice",
        "method": "GET",
        "status_callback": f"{cfg.public_base_url}/status",
        "status_callback_method": "POST",
        "status_callback_event": list(STATUS_CALLBACK_EVENTS),
        "timeout": cfg.ring_timeout_seconds,
    }
    if cfg.machine_detection:
        params["machine_detection"] = cfg.machine_detection
        params["machine_detection_timeout"] = cfg.machine_detection_timeout_seconds

    try:
        # The Twilio helper library is synchronous.
        call = await asyncio.to_thread(client.calls.create, **params)
    except TwilioException as exc:
        LOGGER.error("Twilio rejected call to %s: %s", to_number, exc)
        raise CallPlacementError(f"Twilio rejected the call: {exc}") from exc

    LOGGER.info("Placed call %s to %s", call.sid, to_number)
    return str(call.sid)
