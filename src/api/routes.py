"""Health and status routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from api.dependencies import get_session_registry
from api.schemas import HealthResponse
from telephony.registry import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Hello World!"


@router.get("/ws", response_class=PlainTextResponse)
async def websocket_status() -> str:
    return "WebSocket server is running"


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_session_registry)) -> HealthResponse:
    return HealthResponse(active_calls=await registry.count())
