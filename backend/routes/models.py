"""Pydantic response models for the HTTP endpoints."""

from pydantic import BaseModel

from dndbot.models import GenerationState


class GenerateResponse(BaseModel):
    session_id: str


class SessionStatus(BaseModel):
    session_id: str | None = None
    exists: bool = False
    state: GenerationState | None = None
