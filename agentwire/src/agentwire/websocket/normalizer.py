"""Event normalizer: maps wire event names onto canonical events.

The server vocabulary has grown several names for the same event over time.
``normalize`` resolves them through ``EVENT_ALIASES`` and builds the matching
canonical event. It never raises: unknown types and malformed frames are
logged and dropped, missing optional fields fall back to their defaults.
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ..sessions.events import (
    CanonicalEvent,
    Connected,
    Done,
    Error,
    FileOperation,
    Interrupt,
    MessageDelta,
    MessageEnd,
    MessageStart,
    SessionSnapshot,
    SubagentEnd,
    SubagentStart,
    TodosUpdate,
    ToolCallEnd,
    ToolCallStart,
)
from ..sessions.models import InterruptData
from .events import ServerEnvelope

logger = logging.getLogger(__name__)

EVENT_ALIASES: dict[str, str] = {
    "connected": "connected",
    "state": "session-state-snapshot",
    "state_update": "session-state-snapshot",
    "session_state": "session-state-snapshot",
    "message_start": "message-start",
    "message_delta": "message-delta",
    "content_delta": "message-delta",
    "token": "message-delta",
    "message_end": "message-end",
    "message_complete": "message-end",
    "tool_call_start": "tool-call-start",
    "tool_call_end": "tool-call-end",
    "tool_call_result": "tool-call-end",
    "subagent_start": "subagent-start",
    "subagent_end": "subagent-end",
    "todos_update": "todos-update",
    "todos_updated": "todos-update",
    "todo_update": "todos-update",
    "file_operation": "file-operation",
    "file_update": "file-operation",
    "interrupt": "interrupt",
    "error": "error",
    "done": "done",
}

# Recognised but carry nothing the projector uses
IGNORED_EVENTS = frozenset({"pong", "subagent_update", "tool_call_args_delta"})

_FILE_OPERATIONS = ("write", "edit", "read", "delete")


def normalize(raw: str | bytes | dict[str, Any]) -> CanonicalEvent | None:
    """Turn one wire frame into a canonical event, or None if it carries none."""
    envelope = _parse_envelope(raw)
    if envelope is None:
        return None

    kind = EVENT_ALIASES.get(envelope.type)
    if kind is None:
        if envelope.type not in IGNORED_EVENTS:
            logger.debug(f"Ignoring unknown event type: {envelope.type}")
        return None

    data = envelope.data
    if kind == "todos-update" and not isinstance(data, dict):
        data = {"todos": data}
    elif not isinstance(data, dict):
        data = {}

    timestamp = _timestamp(envelope.timestamp)
    if timestamp is None:
        timestamp = _timestamp(data.get("timestamp"))

    try:
        return _BUILDERS[kind](envelope.type, data, timestamp)
    except (ValidationError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Dropping malformed {envelope.type} event: {e}")
        return None


# ============================================================================
# Field helpers
# ============================================================================


def _parse_envelope(raw: str | bytes | dict[str, Any]) -> ServerEnvelope | None:
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping unparseable frame: {e}")
            return None
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        logger.warning("Dropping frame without an event type")
        return None
    try:
        return ServerEnvelope.model_validate(
            {**raw, "timestamp": _timestamp(raw.get("timestamp"))}
        )
    except ValidationError as e:
        logger.warning(f"Dropping malformed envelope: {e}")
        return None


def _timestamp(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def _pick(data: dict[str, Any], *keys: str) -> Any:
    """First non-None value among the given key aliases."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _integer(value: Any) -> int | None:
    return int(value) if _number(value) is not None else None


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _error_text(value: Any) -> str | None:
    if isinstance(value, dict):
        return _text(value.get("message")) or json.dumps(value)
    return _text(value) or None


# ============================================================================
# Builders
# ============================================================================


def _connected(wire_type: str, data: dict[str, Any], timestamp: int | None) -> Connected:
    return Connected(
        session_id=_text(_pick(data, "cid", "sessionId", "session_id")),
        timestamp=timestamp,
    )


def _snapshot(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> SessionSnapshot:
    messages = data.get("messages")
    return SessionSnapshot(
        messages=[m for m in messages if isinstance(m, dict)]
        if isinstance(messages, list)
        else None,
        todos=data.get("todos"),
        files=_mapping(data.get("files")),
        timestamp=timestamp,
    )


def _message_id(data: dict[str, Any]) -> str | None:
    return _text(_pick(data, "messageId", "message_id", "id"))


def _message_start(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> MessageStart | None:
    message_id = _message_id(data)
    if not message_id:
        logger.debug(f"{wire_type} without a message id")
        return None
    return MessageStart(
        message_id=message_id,
        role=_text(data.get("role")) or "assistant",
        parent_message_id=_text(data.get("parentMessageId")),
        subagent_name=_text(_pick(data, "subagentName", "subAgentName")),
        timestamp=timestamp,
    )


def _message_delta(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> MessageDelta | None:
    message_id = _message_id(data)
    if not message_id:
        logger.debug(f"{wire_type} without a message id")
        return None
    return MessageDelta(
        message_id=message_id,
        delta=_text(_pick(data, "delta", "content", "token")) or "",
        timestamp=timestamp,
    )


def _message_end(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> MessageEnd | None:
    final = data.get("message") if isinstance(data.get("message"), dict) else None
    message_id = _message_id(data) or (final and _text(final.get("id")))
    if not message_id:
        logger.debug(f"{wire_type} without a message id")
        return None
    tool_calls = _pick(data, "toolCalls", "tool_calls")
    metadata = data.get("metadata")
    return MessageEnd(
        message_id=message_id,
        content=_text(data.get("content")),
        message=final,
        tool_calls=[c for c in tool_calls if isinstance(c, dict)]
        if isinstance(tool_calls, list)
        else None,
        metadata=metadata if isinstance(metadata, dict) else None,
        timestamp=timestamp,
    )


def _tool_call_id(data: dict[str, Any]) -> str | None:
    return _text(_pick(data, "toolCallId", "tool_call_id", "id"))


def _tool_call_start(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> ToolCallStart | None:
    tool_call_id = _tool_call_id(data)
    if not tool_call_id:
        logger.debug(f"{wire_type} without a tool call id")
        return None
    return ToolCallStart(
        tool_call_id=tool_call_id,
        tool_name=_text(_pick(data, "toolName", "name")) or "",
        tool_type=_text(_pick(data, "toolType", "type")) or "tool",
        args=_mapping(data.get("args")),
        message_id=_text(_pick(data, "messageId", "message_id")),
        started_at=_text(data.get("startedAt")),
        subagent_name=_text(data.get("subagentName")),
        target_subagent=_text(data.get("targetSubagent")),
        timestamp=timestamp,
    )


def _tool_call_end(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> ToolCallEnd | None:
    tool_call_id = _tool_call_id(data)
    if not tool_call_id:
        logger.debug(f"{wire_type} without a tool call id")
        return None
    return ToolCallEnd(
        tool_call_id=tool_call_id,
        tool_name=_text(_pick(data, "toolName", "name")),
        result=data.get("result"),
        status=_text(data.get("status")) or "completed",
        ended_at=_text(_pick(data, "endedAt", "completedAt")),
        duration_ms=_number(data.get("durationMs")),
        error=_error_text(data.get("error")),
        message_id=_text(_pick(data, "messageId", "message_id")),
        timestamp=timestamp,
    )


def _subagent_start(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> SubagentStart | None:
    name = _text(_pick(data, "subagentName", "subAgentName", "name"))
    if not name:
        logger.debug(f"{wire_type} without a subagent name")
        return None
    task = _pick(data, "taskDescription", "description", "input")
    if isinstance(task, dict):
        task = _pick(task, "description", "task", "prompt") or json.dumps(task)
    return SubagentStart(
        subagent_name=name,
        task_description=_text(task) or "",
        tool_call_id=_text(_pick(data, "toolCallId", "subAgentId")),
        message_id=_text(_pick(data, "messageId", "message_id")),
        timestamp=timestamp,
    )


def _subagent_end(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> SubagentEnd | None:
    name = _text(_pick(data, "subagentName", "subAgentName", "name"))
    tool_call_id = _text(_pick(data, "toolCallId", "subAgentId"))
    if not name and not tool_call_id:
        logger.debug(f"{wire_type} without a subagent name or id")
        return None
    error = _error_text(data.get("error"))
    return SubagentEnd(
        subagent_name=name or "",
        status=_text(data.get("status")) or ("error" if error else "success"),
        output=_pick(data, "output", "result"),
        error=error,
        tool_call_id=tool_call_id,
        message_id=_text(_pick(data, "messageId", "message_id")),
        timestamp=timestamp,
    )


def _todos_update(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> TodosUpdate:
    todos = data.get("todos")
    if todos is None and "items" in data:
        todos = {"items": data["items"]}
    return TodosUpdate(
        todos=todos,
        message_id=_text(_pick(data, "messageId", "message_id")),
        timestamp=timestamp,
    )


def _file_operation(
    wire_type: str, data: dict[str, Any], timestamp: int | None
) -> FileOperation | None:
    path = _text(_pick(data, "path", "filePath", "file_path"))
    if not path:
        logger.debug(f"{wire_type} without a path")
        return None
    operation = data.get("operation")
    if operation not in _FILE_OPERATIONS:
        operation = "write"
    content = data.get("content")
    if isinstance(content, list):
        content = "\n".join(str(line) for line in content)
    editable = data.get("editable")
    return FileOperation(
        operation=operation,
        path=path,
        content=_text(content),
        language=_text(data.get("language")),
        editable=editable if isinstance(editable, bool) else True,
        tool_call_id=_text(data.get("toolCallId")),
        line_start=_integer(_pick(data, "lineStart", "line_start")),
        line_end=_integer(_pick(data, "lineEnd", "line_end")),
        old_content=_text(_pick(data, "oldContent", "old_content")),
        timestamp=timestamp,
    )


def _interrupt(wire_type: str, data: dict[str, Any], timestamp: int | None) -> Interrupt:
    payload = _mapping(data.get("interrupt")) or data
    action_requests = _pick(payload, "actionRequests", "action_requests")
    review_configs = _pick(payload, "reviewConfigs", "review_configs")
    interrupt = InterruptData(
        id=_text(_pick(payload, "id", "interruptId", "interrupt_id")),
        value=payload.get("value"),
        reason=_text(payload.get("reason")),
        action_requests=[
            {**r, "args": _mapping(r.get("args"))}
            for r in action_requests or []
            if isinstance(r, dict)
        ],
        review_configs=[c for c in review_configs or [] if isinstance(c, dict)],
    )
    return Interrupt(interrupt=interrupt, timestamp=timestamp)


def _error(wire_type: str, data: dict[str, Any], timestamp: int | None) -> Error:
    return Error(
        message=_error_text(_pick(data, "message", "error")) or "Unknown error",
        code=_text(data.get("code")),
        details=data.get("details"),
        timestamp=timestamp,
    )


def _done(wire_type: str, data: dict[str, Any], timestamp: int | None) -> Done:
    return Done(reason=_text(data.get("reason")), timestamp=timestamp)


_BUILDERS: dict[str, Callable[[str, dict[str, Any], int | None], CanonicalEvent | None]] = {
    "connected": _connected,
    "session-state-snapshot": _snapshot,
    "message-start": _message_start,
    "message-delta": _message_delta,
    "message-end": _message_end,
    "tool-call-start": _tool_call_start,
    "tool-call-end": _tool_call_end,
    "subagent-start": _subagent_start,
    "subagent-end": _subagent_end,
    "todos-update": _todos_update,
    "file-operation": _file_operation,
    "interrupt": _interrupt,
    "error": _error,
    "done": _done,
}
