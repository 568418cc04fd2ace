"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    port: int = Field(default=3000)
    base_url: str | None = Field(
        default=None,
        description="Public HTTP base URL used for Twilio callbacks (e.g. https://<ngrok>.ngrok-free.app).",
    )
    base_ws_url: str | None = Field(
        default=None,
        description="Public WebSocket base URL for the media stream. Derived from base_url when unset.",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_phone_number: str | None = Field(default=None, description="E.164, e.g. +1415...")
    twilio_ring_timeout_seconds: int = Field(default=30, ge=5, le=600)
    twilio_machine_detection: Literal["Enable", "DetectMessageEnd"] | None = Field(default="Enable")
    twilio_machine_detection_timeout_seconds: int = Field(default=30, ge=3, le=59)
    twiml_pause_seconds: int = Field(
        default=60,
        description="How long Twilio keeps the call open after the media stream ends.",
    )

    # Speech recognition (Deepgram live streaming)
    deepgram_api_key: str | None = Field(default=None)
    deepgram_model: str = Field(default="nova-2-phonecall")
    transcription_language: str = Field(default="en-US")
    transcription_endpointing_ms: int = Field(default=300, ge=10)
    transcription_keepalive_seconds: float = Field(default=5.0, gt=0)
    transcription_close_timeout_seconds: float = Field(default=3.0, gt=0)
    transcription_max_reopens: int = Field(default=1, ge=0)

    # LLM connectivity
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="Base URL for an OpenAI-compatible or self-hosted inference server."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_max_tokens: int = Field(default=150, ge=1)
    llm_temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    completion_timeout_seconds: float = Field(default=8.0, gt=0)

    # Text to speech
    tts_provider: Literal["elevenlabs", "deepgram"] = Field(default="elevenlabs")
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_voice_id: str = Field(default="XrExE9yKIg1WjnnlVkGX")  # "Matilda"
    elevenlabs_model_id: str = Field(default="eleven_turbo_v2_5")
    deepgram_tts_model: str = Field(default="aura-asteria-en")
    synthesis_timeout_seconds: float = Field(default=15.0, gt=0)

    # Conversation script
    greeting_text: str = Field(default="Hello, this is Matilda. How may I help you?")
    fallback_text: str = Field(
        default="I'm sorry, I didn't quite catch that. Could you say that again?"
    )
    system_prompt_file: str = Field(default="system_prompt.txt")

    @field_validator("base_url", "base_ws_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @property
    def public_base_url(self) -> str:
        return self.base_url or f"http://localhost:{self.port}"

    @property
    def public_ws_url(self) -> str:
        if self.base_ws_url:
            return self.base_ws_url
        base = self.public_base_url
        if base.startswith("https://"):
            return "wss://" + base.removeprefix("https://")
        if base.startswith("http://"):
            return "ws://" + base.removeprefix("http://")
        return base


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
