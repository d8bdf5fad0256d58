"""Core domain models.

The generation pipeline, the session layer and storage all operate on these
types. Pydantic is used for validation and serialisation at every data
boundary (checkpoint files, the message history file, WebSocket frames).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Illustration(BaseModel):
    """A prompt for one piece of art: a cover, a scene or a map."""

    model_config = ConfigDict(frozen=True)

    description: str
    style: str = ""
    is_map: bool = False

    @property
    def category(self) -> str:
        return "Area map" if self.is_map else "Illustration"


class Episode(BaseModel):
    """One episode of the adventure series."""

    title: str
    summary: str = ""
    tagline: str = ""
    location: str = ""
    characters: list[str] = Field(default_factory=list)
    one_page: str = ""  # one-page outline
    full_text: str = ""  # fully expanded adventure text
    illustrations: list[Illustration] = Field(default_factory=list)

    def text(self) -> str:
        """Header block used as context when prompting for this episode."""
        return (
            f"## {self.title}\n"
            f"Summary: {self.summary}\n"
            f"Tagline: {self.tagline}\n"
            f"Location: {self.location}\n"
            f"Characters: {', '.join(self.characters)}\n"
        )


class Adventure(BaseModel):
    """The document aggregate built up stage by stage."""

    request: str
    setting: str = ""
    style: str = ""
    table_of_contents: str = ""
    covers: list[Illustration] = Field(default_factory=list)
    episodes: list[Episode] = Field(default_factory=list)


class GenerationState(str, Enum):
    INITIALIZED = "initialized"
    CONNECTED = "connected"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (GenerationState.COMPLETED, GenerationState.ERROR)


MessageType = Literal["update", "ping"]


class StatusMessage(BaseModel):
    """A single server → client progress frame.

    Serialised as ``{type, status, message, output, timestamp}``.
    """

    type: MessageType = "update"
    status: str
    message: str = ""
    output: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
