"""Entry point for the outbound call assistant service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agents.errors import AssistantError
from api.routes import router as health_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("websockets").setLevel(logging.WARNING)

LOGGER = logging.getLogger(__name__)

app = FastAPI(
    title="Outbound Call Assistant",
    description="Places phone calls and holds a spoken conversation over Twilio Media Streams.",
)
app.include_router(health_router)
app.include_router(twilio_router)


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    LOGGER.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def run() -> None:
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
