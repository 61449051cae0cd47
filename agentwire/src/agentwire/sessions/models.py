"""Pydantic models for projected session state."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, field_validator


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolCallType(str, Enum):
    """Plain tool invocation or subagent delegation."""

    TOOL = "tool"
    SUBAGENT = "subagent"


class ToolCallStatus(str, Enum):
    """Status of a tool call."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"


class TodoStatus(str, Enum):
    """Status of a task-list item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


_TOOL_STATUS_ALIASES = {"failed": ToolCallStatus.ERROR, "active": ToolCallStatus.RUNNING}
_TODO_STATUS_ALIASES = {
    "in-progress": TodoStatus.IN_PROGRESS,
    "inprogress": TodoStatus.IN_PROGRESS,
    "running": TodoStatus.IN_PROGRESS,
    "done": TodoStatus.COMPLETED,
    "success": TodoStatus.COMPLETED,
    "error": TodoStatus.FAILED,
}


def tool_call_status(value: Any) -> ToolCallStatus:
    """Coerce a wire status to a ToolCallStatus; unknown values count as completed."""
    if isinstance(value, ToolCallStatus):
        return value
    if value is None:
        return ToolCallStatus.PENDING
    if not isinstance(value, str):
        return ToolCallStatus.COMPLETED
    if value in _TOOL_STATUS_ALIASES:
        return _TOOL_STATUS_ALIASES[value]
    return ToolCallStatus._value2member_map_.get(value, ToolCallStatus.COMPLETED)


def message_role(value: Any) -> MessageRole:
    """Coerce a wire role; anything unrecognised is treated as assistant."""
    if isinstance(value, MessageRole):
        return value
    if value == "human":
        return MessageRole.USER
    if isinstance(value, str):
        return MessageRole._value2member_map_.get(value, MessageRole.ASSISTANT)
    return MessageRole.ASSISTANT


def todo_status(value: Any) -> TodoStatus:
    """Coerce a wire status to a TodoStatus; unknown values count as pending."""
    if isinstance(value, TodoStatus):
        return value
    if not isinstance(value, str):
        return TodoStatus.PENDING
    lowered = value.strip().lower()
    if lowered in TodoStatus._value2member_map_:
        return TodoStatus(lowered)
    return _TODO_STATUS_ALIASES.get(lowered, TodoStatus.PENDING)


class ToolCall(BaseModel):
    """A tool or subagent invocation."""

    id: str
    name: str = ""
    type: ToolCallType = ToolCallType.TOOL
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    status: ToolCallStatus = ToolCallStatus.PENDING
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    duration_ms: float | None = Field(default=None, alias="durationMs")
    error: str | None = None
    subagent_name: str | None = Field(default=None, alias="subagentName")
    target_subagent: str | None = Field(default=None, alias="targetSubagent")

    model_config = {"populate_by_name": True}

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        # "function" is the legacy name for a plain tool
        if value == "subagent":
            return ToolCallType.SUBAGENT
        return ToolCallType.TOOL

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        return tool_call_status(value)

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @property
    def is_terminal(self) -> bool:
        """Whether the call has finished, successfully or not."""
        return self.status not in (ToolCallStatus.PENDING, ToolCallStatus.RUNNING)


class TodoItem(BaseModel):
    """One entry of the agent's task list."""

    id: str = ""
    content: str = ""
    status: TodoStatus = TodoStatus.PENDING
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    duration_ms: float | None = Field(default=None, alias="durationMs")
    error: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        return todo_status(value)


class FileArtifact(BaseModel):
    """A file produced or touched by the agent."""

    path: str
    content: str = ""
    language: str = "text"
    editable: bool = True
    last_modified: str | None = Field(default=None, alias="lastModified")
    old_content: str | None = Field(default=None, alias="oldContent")
    line_start: int | None = Field(default=None, alias="lineStart")
    line_end: int | None = Field(default=None, alias="lineEnd")

    model_config = {"populate_by_name": True}


class ActionRequest(BaseModel):
    """An action awaiting human review."""

    name: str = ""
    args: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None


class ReviewConfig(BaseModel):
    """Allowed decisions for a reviewed action."""

    action_name: str = Field(default="", alias="actionName")
    allowed_decisions: list[str] | None = Field(default=None, alias="allowedDecisions")

    model_config = {"populate_by_name": True}


class InterruptData(BaseModel):
    """A pause point requiring a human decision."""

    id: str | None = None
    value: Any = None
    reason: str | None = None
    action_requests: list[ActionRequest] = Field(
        default_factory=list, alias="actionRequests"
    )
    review_configs: list[ReviewConfig] = Field(
        default_factory=list, alias="reviewConfigs"
    )

    model_config = {"populate_by_name": True}


class ErrorInfo(BaseModel):
    """Last error surfaced to the user."""

    message: str
    code: str | None = None
    details: Any = None


class Message(BaseModel):
    """A conversation message, mutated in place while streaming."""

    id: str
    session_id: str | None = Field(default=None, alias="sessionId")
    role: MessageRole = MessageRole.ASSISTANT
    content: str = ""
    created_at: datetime | None = Field(default=None, alias="createdAt")
    parent_message_id: str | None = Field(default=None, alias="parentMessageId")
    subagent_name: str | None = Field(default=None, alias="subagentName")
    tool_calls: list[ToolCall] | None = Field(default=None, alias="toolCalls")
    metadata: dict[str, Any] | None = None
    is_streaming: bool = Field(default=False, alias="isStreaming")

    model_config = {"populate_by_name": True}

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Any:
        return message_role(value)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            # Multi-part content: keep the text parts only
            return "".join(
                part.get("text") or ""
                for part in value
                if isinstance(part, dict) and part.get("type", "text") == "text"
            )
        return value if isinstance(value, str) else str(value)


class SessionState(BaseModel):
    """Aggregate conversation state folded from the event stream."""

    session_id: str | None = Field(default=None, alias="sessionId")
    messages: list[Message] = Field(default_factory=list)
    tool_calls: dict[str, ToolCall] = Field(default_factory=dict, alias="toolCalls")
    todos: list[TodoItem] = Field(default_factory=list)
    files: dict[str, FileArtifact] = Field(default_factory=dict)
    interrupt: InterruptData | None = None
    is_loading: bool = Field(default=False, alias="isLoading")
    error: ErrorInfo | None = None
    # Message that tool calls without an explicit messageId attach to
    current_message_id: str | None = Field(default=None, alias="currentMessageId")
    # Set once an explicit todos-update arrives; metadata snapshots stop applying
    has_explicit_todos: bool = Field(default=False, alias="hasExplicitTodos")

    model_config = {"populate_by_name": True}

    _index: dict[str, int] = PrivateAttr(default_factory=dict)
    _owners: dict[str, str] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._reindex()

    def _reindex(self) -> None:
        self._index = {message.id: i for i, message in enumerate(self.messages)}
        self._owners = {
            tool_call.id: message.id
            for message in self.messages
            for tool_call in message.tool_calls or []
        }

    def find_message(self, message_id: str | None) -> Message | None:
        """Look up a message by id without scanning the history."""
        if not message_id:
            return None
        position = self._index.get(message_id)
        if position is None or position >= len(self.messages):
            return None
        message = self.messages[position]
        if message.id != message_id:
            # The list was edited behind our back
            self._reindex()
            return self.find_message(message_id)
        return message

    def append_message(self, message: Message) -> Message:
        """Append a message, returning the existing one if the id is taken."""
        existing = self.find_message(message.id)
        if existing is not None:
            return existing
        self._index[message.id] = len(self.messages)
        self.messages.append(message)
        for tool_call in message.tool_calls or []:
            self._owners[tool_call.id] = message.id
        return message

    def replace_messages(self, messages: list[Message]) -> None:
        """Replace the history, keeping the first position of duplicate ids."""
        unique: dict[str, Message] = {}
        for message in messages:
            unique[message.id] = message
        self.messages = list(unique.values())
        self._reindex()

    def attach_tool_call(self, message: Message, tool_call: ToolCall) -> None:
        """Reference a tracked tool call from its owning message."""
        calls = message.tool_calls if message.tool_calls is not None else []
        for i, existing in enumerate(calls):
            if existing.id == tool_call.id:
                calls[i] = tool_call
                break
        else:
            calls.append(tool_call)
        message.tool_calls = calls
        self._owners[tool_call.id] = message.id

    def owner_of(self, tool_call_id: str) -> Message | None:
        """Get the message that embeds a tool call."""
        return self.find_message(self._owners.get(tool_call_id))

    def reset_conversation(self) -> None:
        """Drop conversation data while keeping the bound session id."""
        self.messages = []
        self.tool_calls = {}
        self.todos = []
        self.files = {}
        self.interrupt = None
        self.is_loading = False
        self.error = None
        self.current_message_id = None
        self.has_explicit_todos = False
        self._reindex()
