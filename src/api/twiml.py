from __future__ import annotations

from urllib.parse import urlencode
from xml.sax.saxutils import quoteattr

from fastapi import Response


def twiml_response(xml: str) -> Response:
    # Twilio expects text/xml or application/xml
    return Response(content=xml, media_type="text/xml")


def stream_url(ws_base_url: str, *, path: str, call_sid: str) -> str:
    return f"{ws_base_url.rstrip('/')}{path}?" + urlencode({"CallId": call_sid})


def twiml_connect_stream(*, url: str, call_sid: str, pause_seconds: int) -> str:
    """Open a bidirectional media stream to ``url`` and keep the call up afterwards.

    ``<Connect><Stream>`` is the only Twilio verb that accepts audio sent back
    over the socket. The call SID is also passed as a custom parameter because
    Twilio may drop query strings from stream URLs.
    """

    pause = max(1, int(pause_seconds))
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url={quoteattr(url)}>"
        f"<Parameter name=\"CallId\" value={quoteattr(call_sid)} />"
        "</Stream>"
        "</Connect>"
        f"<Pause length=\"{pause}\" />"
        "</Response>"
    )
