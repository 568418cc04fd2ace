"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CreateCallRequest(BaseModel):
    to: str | None = Field(default=None, description="E.164 phone number, e.g. +1415...")


class CreateCallResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_sid: str = Field(serialization_alias="callSid")


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int
