"""Canonical event types consumed by the state projector.

Server-originated events are produced by the normalizer; client-originated
intents are produced by the session facade. Both flow through the same
reducer so state stays derivable from the ordered event history.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from .models import InterruptData, Message

# ============================================================================
# Canonical Events (server-originated)
# ============================================================================


class Connected(BaseModel):
    """Server acknowledged the connection is ready for session traffic."""

    kind: Literal["connected"] = "connected"
    session_id: str | None = None
    timestamp: int | None = None


class SessionSnapshot(BaseModel):
    """Full conversation state pushed after connecting."""

    kind: Literal["session-state-snapshot"] = "session-state-snapshot"
    messages: list[dict[str, Any]] | None = None
    todos: Any = None
    files: dict[str, Any] = Field(default_factory=dict)
    timestamp: int | None = None


class MessageStart(BaseModel):
    """A new message begins streaming."""

    kind: Literal["message-start"] = "message-start"
    message_id: str
    role: str = "assistant"
    parent_message_id: str | None = None
    subagent_name: str | None = None
    timestamp: int | None = None


class MessageDelta(BaseModel):
    """Streamed text appended to a message."""

    kind: Literal["message-delta"] = "message-delta"
    message_id: str
    delta: str = ""
    timestamp: int | None = None


class MessageEnd(BaseModel):
    """A message finished; may carry authoritative data."""

    kind: Literal["message-end"] = "message-end"
    message_id: str
    content: str | None = None
    message: dict[str, Any] | None = None
    tool_calls: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None
    timestamp: int | None = None


class ToolCallStart(BaseModel):
    """A tool call began running."""

    kind: Literal["tool-call-start"] = "tool-call-start"
    tool_call_id: str
    tool_name: str = ""
    tool_type: str = "tool"
    args: dict[str, Any] = Field(default_factory=dict)
    message_id: str | None = None
    started_at: str | None = None
    subagent_name: str | None = None
    target_subagent: str | None = None
    timestamp: int | None = None


class ToolCallEnd(BaseModel):
    """A tool call produced its result."""

    kind: Literal["tool-call-end"] = "tool-call-end"
    tool_call_id: str
    tool_name: str | None = None
    result: Any = None
    status: str = "completed"
    ended_at: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    message_id: str | None = None
    timestamp: int | None = None


class SubagentStart(BaseModel):
    """A subagent was delegated a task."""

    kind: Literal["subagent-start"] = "subagent-start"
    subagent_name: str
    task_description: str = ""
    tool_call_id: str | None = None
    message_id: str | None = None
    timestamp: int | None = None


class SubagentEnd(BaseModel):
    """A subagent finished its task."""

    kind: Literal["subagent-end"] = "subagent-end"
    subagent_name: str
    status: str = "success"
    output: Any = None
    error: str | None = None
    tool_call_id: str | None = None
    message_id: str | None = None
    timestamp: int | None = None


class TodosUpdate(BaseModel):
    """Explicit task-list update; ``todos`` is kept raw for extraction."""

    kind: Literal["todos-update"] = "todos-update"
    todos: Any = None
    message_id: str | None = None
    timestamp: int | None = None


class FileOperation(BaseModel):
    """A file was written, edited, read or deleted."""

    kind: Literal["file-operation"] = "file-operation"
    operation: Literal["write", "edit", "read", "delete"] = "write"
    path: str
    content: str | None = None
    language: str | None = None
    editable: bool = True
    tool_call_id: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    old_content: str | None = None
    timestamp: int | None = None


class Interrupt(BaseModel):
    """The backend paused for a human decision."""

    kind: Literal["interrupt"] = "interrupt"
    interrupt: InterruptData
    timestamp: int | None = None


class Error(BaseModel):
    """Application-level failure reported by the backend."""

    kind: Literal["error"] = "error"
    message: str = "Unknown error"
    code: str | None = None
    details: Any = None
    timestamp: int | None = None


class Done(BaseModel):
    """The current request finished."""

    kind: Literal["done"] = "done"
    reason: str | None = None
    timestamp: int | None = None


# ============================================================================
# Canonical Events (client-originated intents)
# ============================================================================


class UserMessageSent(BaseModel):
    """A user message was handed to the outbound queue."""

    kind: Literal["user-message"] = "user-message"
    message: Message
    timestamp: int | None = None


class InterruptResumed(BaseModel):
    """The active interrupt was answered."""

    kind: Literal["interrupt-resumed"] = "interrupt-resumed"
    interrupt_id: str | None = None
    timestamp: int | None = None


class GenerationStopped(BaseModel):
    """A stop was requested for the current turn."""

    kind: Literal["stopped"] = "stopped"
    timestamp: int | None = None


class ClientErrorRaised(BaseModel):
    """A client-side failure, optionally ending the current turn."""

    kind: Literal["client-error"] = "client-error"
    message: str
    code: str | None = None
    ends_turn: bool = True
    timestamp: int | None = None


class ConversationReset(BaseModel):
    """Conversation state was cleared, e.g. on a session switch."""

    kind: Literal["reset"] = "reset"
    session_id: str | None = None
    timestamp: int | None = None


CanonicalEvent = Annotated[
    Union[
        Connected,
        SessionSnapshot,
        MessageStart,
        MessageDelta,
        MessageEnd,
        ToolCallStart,
        ToolCallEnd,
        SubagentStart,
        SubagentEnd,
        TodosUpdate,
        FileOperation,
        Interrupt,
        Error,
        Done,
        UserMessageSent,
        InterruptResumed,
        GenerationStopped,
        ClientErrorRaised,
        ConversationReset,
    ],
    Field(discriminator="kind"),
]
