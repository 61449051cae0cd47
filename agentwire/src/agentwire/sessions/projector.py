"""State projector: folds canonical events into a SessionState.

``apply_event`` is the single place conversation state changes. It runs one
event at a time, performs no I/O and never suspends. Streaming content is
appended in place, so the returned state is the same object that was passed
in.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from .events import (
    CanonicalEvent,
    ClientErrorRaised,
    Connected,
    ConversationReset,
    Done,
    Error,
    FileOperation,
    GenerationStopped,
    Interrupt,
    InterruptResumed,
    MessageDelta,
    MessageEnd,
    MessageStart,
    SessionSnapshot,
    SubagentEnd,
    SubagentStart,
    TodosUpdate,
    ToolCallEnd,
    ToolCallStart,
    UserMessageSent,
)
from .extract import (
    TODO_TOOLS,
    extract_files,
    extract_todos,
    infer_language,
    normalize_file_map,
)
from .models import (
    ErrorInfo,
    FileArtifact,
    Message,
    SessionState,
    TodoItem,
    ToolCall,
    ToolCallStatus,
    ToolCallType,
    message_role,
    tool_call_status,
)

logger = logging.getLogger(__name__)

_SUCCESS = (ToolCallStatus.SUCCESS, ToolCallStatus.COMPLETED)


def apply_event(state: SessionState, event: CanonicalEvent) -> SessionState:
    """Fold one canonical event into ``state`` and return it."""
    reducer = _REDUCERS.get(event.kind)
    if reducer is None:
        logger.debug(f"No reducer for event kind: {event.kind}")
        return state
    reducer(state, event)
    return state


def replay(
    events: Iterable[CanonicalEvent], state: SessionState | None = None
) -> SessionState:
    """Rebuild state from an ordered event history."""
    state = state if state is not None else SessionState()
    for event in events:
        apply_event(state, event)
    return state


# ============================================================================
# Helpers
# ============================================================================


def _as_datetime(timestamp: int | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)


def _as_iso(timestamp: int | None) -> str | None:
    moment = _as_datetime(timestamp)
    return moment.isoformat() if moment else None


def _is_placeholder(value: Any) -> bool:
    """Empty values and ``{"_preview": ...}`` wrappers are not full data."""
    if value is None or value == {}:
        return True
    return isinstance(value, dict) and set(value) == {"_preview"}


def _summary_tool_call(raw: dict[str, Any]) -> ToolCall | None:
    """Build a ToolCall from a summary that may only carry previews."""
    if not raw.get("id"):
        return None
    args = raw.get("args")
    if not args:
        args = {"_preview": raw["argsPreview"]} if raw.get("argsPreview") else {}
    result = raw.get("result")
    if result is None and raw.get("resultPreview"):
        result = {"_preview": raw["resultPreview"]}
    data = {
        **raw,
        "id": str(raw["id"]),
        "type": raw.get("type") or raw.get("toolType"),
        "args": args,
        "result": result,
        "status": raw.get("status") or ToolCallStatus.COMPLETED,
    }
    try:
        return ToolCall.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping malformed tool call summary: {e}")
        return None


def _snapshot_message(raw: Any, session_id: str | None) -> Message | None:
    if not isinstance(raw, dict):
        return None
    message_id = raw.get("id") or raw.get("messageId")
    if not message_id:
        return None
    data = dict(raw)
    raw_calls = data.pop("tool_calls", None) or data.get("toolCalls") or []
    calls = [
        call
        for entry in raw_calls
        if isinstance(entry, dict) and (call := _summary_tool_call(entry))
    ]
    data.update(
        {
            "id": str(message_id),
            "role": data.get("role") or data.get("type"),
            "sessionId": data.get("sessionId") or data.get("cid") or session_id,
            "toolCalls": calls or None,
            "isStreaming": False,
        }
    )
    try:
        return Message.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Dropping malformed message {message_id} from snapshot: {e}")
        return None


def _metadata_todos(metadata: Any) -> list[TodoItem] | None:
    if not isinstance(metadata, dict) or metadata.get("todos") is None:
        return None
    return extract_todos(metadata["todos"])


def _files_from_tool_calls(calls: Iterable[ToolCall]) -> dict[str, FileArtifact]:
    files: dict[str, FileArtifact] = {}
    for call in calls:
        files.update(
            extract_files(
                call.result,
                tool_name=call.name,
                args=call.args,
                succeeded=call.status in _SUCCESS,
            )
        )
    return files


def _merge_tool_call(tracked: ToolCall, summary: ToolCall) -> ToolCall:
    """Fill gaps in a tracked call from a summary; full data always wins."""
    if _is_placeholder(tracked.args) and not _is_placeholder(summary.args):
        tracked.args = summary.args
    elif not tracked.args:
        tracked.args = summary.args
    if _is_placeholder(tracked.result) and not _is_placeholder(summary.result):
        tracked.result = summary.result
    elif tracked.result is None:
        tracked.result = summary.result
    if tracked.duration_ms is None:
        tracked.duration_ms = summary.duration_ms
    if tracked.subagent_name is None:
        tracked.subagent_name = summary.subagent_name
    if not tracked.is_terminal and summary.is_terminal:
        tracked.status = summary.status
    return tracked


# ============================================================================
# Reducers: server-originated events
# ============================================================================


def _on_connected(state: SessionState, event: Connected) -> None:
    if event.session_id:
        state.session_id = event.session_id


def _on_snapshot(state: SessionState, event: SessionSnapshot) -> None:
    if event.messages is not None:
        state.replace_messages(
            [
                message
                for raw in event.messages
                if (message := _snapshot_message(raw, state.session_id))
            ]
        )
        state.tool_calls = {
            call.id: call
            for message in state.messages
            for call in message.tool_calls or []
        }
        state.current_message_id = None

    todos = extract_todos(event.todos) if event.todos is not None else None
    if todos:
        state.todos = todos
        state.has_explicit_todos = True
    elif event.messages is not None:
        state.todos = []
        for message in reversed(state.messages):
            snapshot = _metadata_todos(message.metadata)
            if snapshot is not None:
                state.todos = snapshot
                break

    if event.messages is not None or event.files:
        files = normalize_file_map(event.files)
        files.update(_files_from_tool_calls(state.tool_calls.values()))
        state.files = files


def _on_message_start(state: SessionState, event: MessageStart) -> None:
    if not event.message_id:
        return
    state.is_loading = True
    if state.find_message(event.message_id) is not None:
        # Duplicate start: never a second entry, never a restart
        return
    state.append_message(
        Message(
            id=event.message_id,
            session_id=state.session_id,
            role=event.role,
            content="",
            created_at=_as_datetime(event.timestamp),
            parent_message_id=event.parent_message_id,
            subagent_name=event.subagent_name,
            is_streaming=True,
        )
    )
    state.current_message_id = event.message_id


def _on_message_delta(state: SessionState, event: MessageDelta) -> None:
    message = state.find_message(event.message_id)
    if message is None or not message.is_streaming or not event.delta:
        return
    message.content += event.delta


def _on_message_end(state: SessionState, event: MessageEnd) -> None:
    message = state.find_message(event.message_id)
    if message is None or not message.is_streaming:
        return

    final = event.message or {}
    content = final.get("content")
    if not isinstance(content, str) or not content:
        content = event.content
    if isinstance(content, str) and content:
        message.content = content

    summaries = final.get("toolCalls") or final.get("tool_calls") or event.tool_calls or []
    _merge_message_tool_calls(state, message, summaries)

    metadata = final.get("metadata") or event.metadata
    if isinstance(metadata, dict):
        message.metadata = {**(message.metadata or {}), **metadata}
    if final.get("role"):
        message.role = message_role(final["role"])
    message.parent_message_id = final.get("parentMessageId") or message.parent_message_id
    message.subagent_name = final.get("subagentName") or message.subagent_name

    message.is_streaming = False
    if state.current_message_id == message.id:
        state.current_message_id = None

    if not state.has_explicit_todos:
        todos = _metadata_todos(metadata)
        if todos is not None:
            state.todos = todos


def _merge_message_tool_calls(
    state: SessionState, message: Message, summaries: list[Any]
) -> None:
    """Merge end-of-message tool-call summaries into tracked calls by id."""
    merged: dict[str, ToolCall] = {}
    for raw in summaries:
        if isinstance(raw, dict) and (summary := _summary_tool_call(raw)):
            merged[summary.id] = summary
    for tracked in message.tool_calls or []:
        summary = merged.get(tracked.id)
        merged[tracked.id] = _merge_tool_call(tracked, summary) if summary else tracked
    for call_id, call in list(merged.items()):
        tracked = state.tool_calls.get(call_id)
        if tracked is None:
            state.tool_calls[call_id] = call
        elif tracked is not call:
            merged[call_id] = _merge_tool_call(tracked, call)
    for call in merged.values():
        state.attach_tool_call(message, call)


def _on_tool_call_start(state: SessionState, event: ToolCallStart) -> None:
    if not event.tool_call_id:
        return
    fields = {
        "name": event.tool_name,
        "type": ToolCallType.SUBAGENT if event.tool_type == "subagent" else ToolCallType.TOOL,
        "args": event.args,
        "result": None,
        "status": ToolCallStatus.RUNNING,
        "started_at": event.started_at or _as_iso(event.timestamp),
        "ended_at": None,
        "duration_ms": None,
        "error": None,
        "subagent_name": event.subagent_name,
        "target_subagent": event.target_subagent,
    }
    call = state.tool_calls.get(event.tool_call_id)
    if call is None:
        call = ToolCall(id=event.tool_call_id, **fields)
        state.tool_calls[call.id] = call
    else:
        # Restart of a known call: update in place so embedded copies follow
        for name, value in fields.items():
            setattr(call, name, value)

    message = state.find_message(event.message_id or state.current_message_id)
    if message is not None:
        state.attach_tool_call(message, call)


def _on_tool_call_end(state: SessionState, event: ToolCallEnd) -> None:
    status = ToolCallStatus.ERROR if event.error else tool_call_status(event.status)
    call = state.tool_calls.get(event.tool_call_id)
    if call is not None:
        call.result = event.result
        call.status = status
        call.ended_at = event.ended_at or _as_iso(event.timestamp)
        call.duration_ms = event.duration_ms
        call.error = event.error
        owner = state.owner_of(call.id)
        if owner is not None:
            state.attach_tool_call(owner, call)

    tool_name = call.name if call is not None else event.tool_name
    files = extract_files(
        event.result,
        tool_name=tool_name,
        args=call.args if call is not None else None,
        succeeded=status in _SUCCESS,
    )
    modified = event.ended_at or _as_iso(event.timestamp)
    for path, artifact in files.items():
        artifact.last_modified = modified
        state.files[path] = artifact

    if tool_name in TODO_TOOLS and event.result is not None:
        todos = extract_todos(event.result)
        if todos is not None:
            state.todos = todos


def _on_subagent_start(state: SessionState, event: SubagentStart) -> None:
    marker = event.timestamp if event.timestamp is not None else len(state.tool_calls)
    _on_tool_call_start(
        state,
        ToolCallStart(
            tool_call_id=event.tool_call_id or f"subagent-{event.subagent_name}-{marker}",
            tool_name="task",
            tool_type="subagent",
            args={"task": event.task_description},
            message_id=event.message_id,
            target_subagent=event.subagent_name,
            timestamp=event.timestamp,
        ),
    )


def _on_subagent_end(state: SessionState, event: SubagentEnd) -> None:
    call = state.tool_calls.get(event.tool_call_id or "")
    if call is None:
        for candidate in reversed(list(state.tool_calls.values())):
            if (
                candidate.type == ToolCallType.SUBAGENT
                and candidate.target_subagent == event.subagent_name
                and not candidate.is_terminal
            ):
                call = candidate
                break
    if call is None:
        logger.debug(f"No running subagent call for {event.subagent_name}")
        return
    failed = bool(event.error) or event.status in ("error", "failed")
    _on_tool_call_end(
        state,
        ToolCallEnd(
            tool_call_id=call.id,
            tool_name=call.name,
            result=event.output if event.output is not None else call.result,
            status="error" if failed else "success",
            error=event.error,
            timestamp=event.timestamp,
        ),
    )


def _on_todos_update(state: SessionState, event: TodosUpdate) -> None:
    todos = extract_todos(event.todos)
    if todos is None:
        logger.debug("Ignoring todos update with unrecognised shape")
        return
    state.todos = todos
    state.has_explicit_todos = True


def _on_file_operation(state: SessionState, event: FileOperation) -> None:
    if not event.path:
        return
    if event.operation == "delete":
        state.files.pop(event.path, None)
        return
    existing = state.files.get(event.path)
    content = event.content
    if content is None:
        content = existing.content if existing is not None else ""
    state.files[event.path] = FileArtifact(
        path=event.path,
        content=content,
        language=event.language or infer_language(event.path),
        editable=event.editable,
        last_modified=_as_iso(event.timestamp),
        old_content=event.old_content,
        line_start=event.line_start,
        line_end=event.line_end,
    )


def _on_interrupt(state: SessionState, event: Interrupt) -> None:
    state.interrupt = event.interrupt
    state.is_loading = False


def _on_error(state: SessionState, event: Error) -> None:
    state.error = ErrorInfo(message=event.message, code=event.code, details=event.details)


def _on_done(state: SessionState, event: Done) -> None:
    state.is_loading = False
    state.interrupt = None
    if event.reason == "error":
        logger.warning("Request completed with errors")


# ============================================================================
# Reducers: client-originated intents
# ============================================================================


def _on_user_message(state: SessionState, event: UserMessageSent) -> None:
    state.append_message(event.message)
    state.is_loading = True
    state.error = None


def _on_interrupt_resumed(state: SessionState, event: InterruptResumed) -> None:
    state.interrupt = None
    state.is_loading = True


def _on_stopped(state: SessionState, event: GenerationStopped) -> None:
    state.is_loading = False


def _on_client_error(state: SessionState, event: ClientErrorRaised) -> None:
    state.error = ErrorInfo(message=event.message, code=event.code)
    if event.ends_turn:
        state.is_loading = False


def _on_reset(state: SessionState, event: ConversationReset) -> None:
    state.reset_conversation()
    if event.session_id:
        state.session_id = event.session_id


_REDUCERS: dict[str, Callable[[SessionState, Any], None]] = {
    "connected": _on_connected,
    "session-state-snapshot": _on_snapshot,
    "message-start": _on_message_start,
    "message-delta": _on_message_delta,
    "message-end": _on_message_end,
    "tool-call-start": _on_tool_call_start,
    "tool-call-end": _on_tool_call_end,
    "subagent-start": _on_subagent_start,
    "subagent-end": _on_subagent_end,
    "todos-update": _on_todos_update,
    "file-operation": _on_file_operation,
    "interrupt": _on_interrupt,
    "error": _on_error,
    "done": _on_done,
    "user-message": _on_user_message,
    "interrupt-resumed": _on_interrupt_resumed,
    "stopped": _on_stopped,
    "client-error": _on_client_error,
    "reset": _on_reset,
}
