"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. Provider clients
are built lazily so importing the app never needs API keys.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from agents.responder import ResponseGenerator
from config.settings import get_settings
from llm.factory import build_llm_client
from prompts.loader import load_prompt
from speech.transcriber import build_transcription_channel, build_transcription_config
from speech.tts import build_synthesizer
from telephony.media_stream import MediaTransport
from telephony.orchestrator import CallSessionOrchestrator
from telephony.registry import GLOBAL_SESSION_REGISTRY, SessionRegistry

OrchestratorFactory = Callable[[MediaTransport, str], CallSessionOrchestrator]


def get_session_registry() -> SessionRegistry:
    return GLOBAL_SESSION_REGISTRY


@lru_cache(maxsize=1)
def _responder_factory() -> ResponseGenerator:
    settings = get_settings()
    return ResponseGenerator(
        build_llm_client(),
        fallback_text=settings.fallback_text,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        timeout_seconds=settings.completion_timeout_seconds,
    )


def get_orchestrator_factory() -> OrchestratorFactory:
    settings = get_settings()
    responder = _responder_factory()
    synthesizer = build_synthesizer()
    system_prompt = load_prompt(settings.system_prompt_file)
    transcription_config = build_transcription_config()
    registry = get_session_registry()

    def factory(transport: MediaTransport, call_sid: str) -> CallSessionOrchestrator:
        return CallSessionOrchestrator(
            transport,
            call_sid=call_sid,
            system_prompt=system_prompt,
            responder=responder,
            synthesizer=synthesizer,
            transcription_factory=build_transcription_channel,
            transcription_config=transcription_config,
            greeting_text=settings.greeting_text,
            synthesis_timeout_seconds=settings.synthesis_timeout_seconds,
            max_transcription_reopens=settings.transcription_max_reopens,
            registry=registry,
        )

    return factory
