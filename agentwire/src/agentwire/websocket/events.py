"""Wire envelopes exchanged over the chat socket."""

import time
from typing import Any, Literal

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


# ============================================================================
# Client -> Server Messages
# ============================================================================


class Attachment(BaseModel):
    """File or image attached to a user message."""

    type: Literal["file", "image"] = "file"
    url: str | None = None
    content: str | None = None
    name: str | None = None


class UserMessageData(BaseModel):
    """Payload for user_message."""

    content: str
    attachments: list[Attachment] | None = None


class ResumeInterruptData(BaseModel):
    """Payload for resume_interrupt."""

    interrupt_id: str = Field(alias="interruptId")
    decision: Any = None

    model_config = {"populate_by_name": True}


class BindSessionData(BaseModel):
    """Payload for bind_session."""

    session_id: str = Field(alias="cid")

    model_config = {"populate_by_name": True}


class ClientMessage(BaseModel):
    """Client to server message envelope."""

    type: Literal["user_message", "resume_interrupt", "stop", "ping", "bind_session"]
    data: UserMessageData | ResumeInterruptData | BindSessionData | None = None
    timestamp: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        """Serialize with camelCase aliases, omitting empty fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ============================================================================
# Server -> Client Envelope
# ============================================================================


class ServerEnvelope(BaseModel):
    """Raw server event before normalization."""

    type: str
    data: Any = None
    timestamp: int | None = None

    model_config = {"extra": "allow"}
