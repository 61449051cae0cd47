"""Tests for the session state projector."""

from agentwire.sessions.events import (
    ClientErrorRaised,
    ConversationReset,
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
    UserMessageSent,
)
from agentwire.sessions.models import (
    InterruptData,
    Message,
    MessageRole,
    SessionState,
    TodoStatus,
    ToolCallStatus,
    ToolCallType,
)
from agentwire.sessions.projector import apply_event, replay


def stream(state, message_id, *deltas, **end):
    apply_event(state, MessageStart(message_id=message_id))
    for delta in deltas:
        apply_event(state, MessageDelta(message_id=message_id, delta=delta))
    apply_event(state, MessageEnd(message_id=message_id, **end))


# ============================================================================
# Messages
# ============================================================================


def test_deltas_concatenate(state):
    """Test the basic streaming scenario."""
    stream(state, "m1", "Hel", "lo")

    message = state.find_message("m1")
    assert message.content == "Hello"
    assert message.is_streaming is False
    assert state.current_message_id is None


def test_content_equals_ordered_concatenation(state):
    """Test that many deltas concatenate in order."""
    deltas = [f"chunk{i} " for i in range(200)]
    stream(state, "m1", *deltas)

    assert state.find_message("m1").content == "".join(deltas)


def test_end_content_overrides_deltas(state):
    """Test that authoritative end content replaces streamed text."""
    stream(state, "m1", "Hel", content="Hello, world")

    assert state.find_message("m1").content == "Hello, world"


def test_empty_end_content_keeps_deltas(state):
    """Test that an empty end payload does not erase streamed text."""
    stream(state, "m1", "Hi", content="", message={"content": None})

    assert state.find_message("m1").content == "Hi"


def test_duplicate_start_never_creates_second_message(state):
    """Test that a repeated message-start is a no-op."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, MessageDelta(message_id="m1", delta="a"))
    apply_event(state, MessageStart(message_id="m1"))

    assert [m.id for m in state.messages] == ["m1"]
    assert state.messages[0].content == "a"


def test_end_for_unknown_message_is_noop(state):
    """Test that message-end never fabricates a message."""
    apply_event(state, MessageEnd(message_id="ghost", content="boo"))

    assert state.messages == []


def test_finalized_message_ignores_late_events(state):
    """Test that a finalized message is never reopened."""
    stream(state, "m1", "done")
    apply_event(state, MessageDelta(message_id="m1", delta=" more"))
    apply_event(state, MessageEnd(message_id="m1", content="rewritten"))

    assert state.find_message("m1").content == "done"


def test_message_start_sets_loading_and_role(state):
    """Test that a start creates an empty streaming message."""
    apply_event(state, MessageStart(message_id="m1", role="human", subagent_name="coder"))

    message = state.messages[0]
    assert message.role == MessageRole.USER
    assert message.content == ""
    assert message.subagent_name == "coder"
    assert state.is_loading is True


# ============================================================================
# Tool calls
# ============================================================================


def test_tool_call_attaches_to_current_message(state):
    """Test that a tool call without messageId lands on the streaming message."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, ToolCallStart(tool_call_id="t1", tool_name="search", args={"q": "x"}))

    call = state.tool_calls["t1"]
    assert call.status == ToolCallStatus.RUNNING
    assert state.messages[0].tool_calls == [call]


def test_tool_call_end_mirrors_into_message(state):
    """Test that the map entry and embedded copy stay in sync."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, ToolCallStart(tool_call_id="t1", tool_name="search"))
    apply_event(
        state,
        ToolCallEnd(tool_call_id="t1", result={"hits": 3}, status="success", duration_ms=12),
    )

    embedded = state.messages[0].tool_calls
    assert len(embedded) == 1
    assert embedded[0].result == {"hits": 3}
    assert embedded[0].status == ToolCallStatus.SUCCESS
    assert embedded[0].duration_ms == 12
    assert embedded[0] is state.tool_calls["t1"]


def test_tool_call_error_wins_over_status(state):
    """Test that an error marks the call failed whatever the status says."""
    apply_event(state, ToolCallStart(tool_call_id="t1"))
    apply_event(state, ToolCallEnd(tool_call_id="t1", status="success", error="boom"))

    assert state.tool_calls["t1"].status == ToolCallStatus.ERROR
    assert state.tool_calls["t1"].error == "boom"


def test_tool_call_replay_is_idempotent(state):
    """Test that replaying start and end twice equals applying them once."""
    events = [
        MessageStart(message_id="m1"),
        ToolCallStart(tool_call_id="t1", tool_name="search", args={"q": "x"}, timestamp=1000),
        ToolCallEnd(tool_call_id="t1", result={"ok": True}, status="success", timestamp=2000),
    ]
    once = replay(events, SessionState(session_id="s1"))
    twice = replay(events + events[1:], SessionState(session_id="s1"))

    assert twice.tool_calls["t1"].model_dump() == once.tool_calls["t1"].model_dump()
    assert len(twice.messages[0].tool_calls) == 1


def test_unknown_tool_status_counts_as_completed(state):
    """Test that an unrecognised terminal status is treated as completed."""
    apply_event(state, ToolCallStart(tool_call_id="t1"))
    apply_event(state, ToolCallEnd(tool_call_id="t1", status="finished"))

    assert state.tool_calls["t1"].status == ToolCallStatus.COMPLETED


def test_message_end_merge_prefers_tracked_data(state):
    """Test that full tracked data beats preview summaries on message-end."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, ToolCallStart(tool_call_id="t1", tool_name="read", args={"path": "/a"}))
    apply_event(state, ToolCallEnd(tool_call_id="t1", result={"text": "full"}, status="success"))
    apply_event(
        state,
        MessageEnd(
            message_id="m1",
            tool_calls=[
                {"id": "t1", "name": "read", "argsPreview": "{'pa", "resultPreview": "fu", "durationMs": 40},
                {"id": "t2", "name": "search", "argsPreview": "q=x", "status": "success"},
            ],
        ),
    )

    message = state.find_message("m1")
    by_id = {call.id: call for call in message.tool_calls}
    assert by_id["t1"].args == {"path": "/a"}
    assert by_id["t1"].result == {"text": "full"}
    assert by_id["t1"].duration_ms == 40
    assert by_id["t2"].args == {"_preview": "q=x"}
    assert state.tool_calls["t2"] is by_id["t2"]
    assert len(message.tool_calls) == 2


def test_message_end_summary_fills_placeholder(state):
    """Test that a summary completes a call that only had a preview."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(
        state,
        MessageEnd(
            message_id="m1",
            tool_calls=[{"id": "t1", "argsPreview": "a", "status": "running"}],
        ),
    )
    apply_event(state, MessageStart(message_id="m2"))
    apply_event(
        state,
        MessageEnd(
            message_id="m2",
            message={"toolCalls": [{"id": "t1", "args": {"full": 1}, "status": "success"}]},
        ),
    )

    call = state.tool_calls["t1"]
    assert call.args == {"full": 1}
    assert call.status == ToolCallStatus.SUCCESS


def test_subagent_lifecycle(state):
    """Test that subagent events track a subagent-type tool call."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(
        state,
        SubagentStart(subagent_name="researcher", task_description="find docs", timestamp=10),
    )
    apply_event(state, SubagentEnd(subagent_name="researcher", output="found 3"))

    call = state.tool_calls["subagent-researcher-10"]
    assert call.type == ToolCallType.SUBAGENT
    assert call.name == "task"
    assert call.args == {"task": "find docs"}
    assert call.target_subagent == "researcher"
    assert call.status == ToolCallStatus.SUCCESS
    assert call.result == "found 3"
    assert state.messages[0].tool_calls == [call]


def test_subagent_end_without_running_call_is_noop(state):
    """Test that an unmatched subagent end changes nothing."""
    apply_event(state, SubagentEnd(subagent_name="nobody", status="error"))

    assert state.tool_calls == {}


# ============================================================================
# Files and todos
# ============================================================================


def test_tool_result_files_scenario(state):
    """Test file extraction from a structured tool result."""
    apply_event(state, ToolCallStart(tool_call_id="t1", args={}))
    apply_event(
        state,
        ToolCallEnd(tool_call_id="t1", result={"files": {"/a.md": {"content": "X"}}}),
    )

    artifact = state.files["/a.md"]
    assert artifact.content == "X"
    assert artifact.editable is True


def test_write_tool_arguments_become_file(state):
    """Test that a successful write_file call yields its file."""
    apply_event(
        state,
        ToolCallStart(
            tool_call_id="t1",
            tool_name="write_file",
            args={"file_path": "/app.py", "content": "print(1)"},
        ),
    )
    apply_event(state, ToolCallEnd(tool_call_id="t1", result="written", status="success"))

    assert state.files["/app.py"].content == "print(1)"
    assert state.files["/app.py"].language == "python"


def test_file_sources_converge_by_path(state):
    """Test that file events and tool results converge on one artifact."""
    apply_event(state, FileOperation(path="/a.md", content="first"))
    apply_event(state, ToolCallStart(tool_call_id="t1"))
    apply_event(
        state, ToolCallEnd(tool_call_id="t1", result={"files": {"/a.md": {"content": "second"}}})
    )
    assert list(state.files) == ["/a.md"]
    assert state.files["/a.md"].content == "second"

    apply_event(state, FileOperation(operation="edit", path="/a.md", content="third"))
    assert state.files["/a.md"].content == "third"
    assert state.files["/a.md"].editable is True


def test_file_operation_delete_and_read(state):
    """Test deletion and a content-less read keeping existing content."""
    apply_event(state, FileOperation(path="/a.md", content="keep"))
    apply_event(state, FileOperation(operation="read", path="/a.md"))
    assert state.files["/a.md"].content == "keep"

    apply_event(state, FileOperation(operation="delete", path="/a.md"))
    assert "/a.md" not in state.files


def test_textual_todos_update_scenario(state):
    """Test the Python-literal textual todo payload."""
    apply_event(
        state, TodosUpdate(todos="Updated todo list to [{'content':'a','status':'pending'}]")
    )

    assert len(state.todos) == 1
    assert state.todos[0].content == "a"
    assert state.todos[0].status == TodoStatus.PENDING


def test_unrecognised_todos_keep_previous_list(state):
    """Test that an unknown todo shape leaves the list untouched."""
    apply_event(state, TodosUpdate(todos=[{"content": "a"}]))
    apply_event(state, TodosUpdate(todos={"weird": True}))

    assert [t.content for t in state.todos] == ["a"]


def test_metadata_todos_only_without_explicit_update(state):
    """Test that message metadata todos stop applying after an explicit update."""
    stream(state, "m1", metadata={"todos": {"items": [{"content": "from metadata"}]}})
    assert [t.content for t in state.todos] == ["from metadata"]

    apply_event(state, TodosUpdate(todos=[{"content": "explicit"}]))
    stream(state, "m2", metadata={"todos": {"items": [{"content": "stale"}]}})

    assert [t.content for t in state.todos] == ["explicit"]


def test_write_todos_result_replaces_list(state):
    """Test todo extraction from the todo tool's result."""
    apply_event(state, ToolCallStart(tool_call_id="t1", tool_name="write_todos"))
    apply_event(
        state,
        ToolCallEnd(tool_call_id="t1", result="Updated todo list to [{'content': 'b'}]"),
    )

    assert [t.content for t in state.todos] == ["b"]


# ============================================================================
# Interrupts, errors and completion
# ============================================================================


def test_interrupt_then_done(state):
    """Test that an interrupt pauses loading and done clears it."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, Interrupt(interrupt=InterruptData(id="i1", reason="approve?")))
    assert state.interrupt.id == "i1"
    assert state.is_loading is False

    apply_event(state, Done())
    assert state.interrupt is None


def test_error_keeps_partial_progress(state):
    """Test that an error event records the error and nothing else."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, MessageDelta(message_id="m1", delta="partial"))
    apply_event(state, Error(message="backend failed", code="internal"))

    assert state.error.message == "backend failed"
    assert state.find_message("m1").content == "partial"
    assert state.is_loading is True


def test_done_with_error_reason_does_not_raise(state):
    """Test that done{reason: error} only clears loading."""
    apply_event(state, MessageStart(message_id="m1"))
    apply_event(state, Done(reason="error"))

    assert state.is_loading is False


# ============================================================================
# Snapshots and local intents
# ============================================================================


def test_snapshot_replaces_history(state):
    """Test that a snapshot rebuilds messages, tool calls, todos and files."""
    stream(state, "old", "gone")
    apply_event(
        state,
        SessionSnapshot(
            messages=[
                {"id": "u1", "role": "user", "content": "hi"},
                {
                    "id": "a1",
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "t1",
                            "name": "write_file",
                            "args": {"path": "/b.md", "content": "B"},
                            "status": "success",
                        }
                    ],
                    "metadata": {"todos": {"items": [{"content": "snap", "status": "done"}]}},
                },
                {"id": "u1", "role": "user", "content": "duplicate"},
                {"role": "user", "content": "no id"},
            ],
            files={"/a.md": "A"},
        ),
    )

    assert [m.id for m in state.messages] == ["u1", "a1"]
    assert state.messages[1].content == ""
    assert state.tool_calls["t1"] is state.messages[1].tool_calls[0]
    assert [t.content for t in state.todos] == ["snap"]
    assert state.todos[0].status == TodoStatus.COMPLETED
    assert state.files["/a.md"].content == "A"
    assert state.files["/b.md"].content == "B"


def test_snapshot_then_stream_continues(state):
    """Test that streaming works on top of a snapshot."""
    apply_event(state, SessionSnapshot(messages=[{"id": "u1", "role": "user", "content": "hi"}]))
    stream(state, "a1", "hey")

    assert [m.content for m in state.messages] == ["hi", "hey"]


def test_user_message_and_client_error(state):
    """Test the optimistic user message and a failed send."""
    apply_event(state, Error(message="old"))
    apply_event(state, UserMessageSent(message=Message(id="u1", role="user", content="hi")))
    assert state.is_loading is True
    assert state.error is None

    apply_event(state, ClientErrorRaised(message="send failed", code="transport_error"))
    assert state.is_loading is False
    assert state.error.code == "transport_error"
    assert state.messages[0].content == "hi"


def test_reset_clears_conversation(state):
    """Test that a reset drops conversation data and rebinds the id."""
    stream(state, "m1", "x")
    apply_event(state, FileOperation(path="/a", content="a"))
    apply_event(state, ConversationReset(session_id="s2"))

    assert state.messages == []
    assert state.files == {}
    assert state.session_id == "s2"
    assert state.find_message("m1") is None


def test_replay_matches_incremental_application():
    """Test that state is derivable from the ordered event history."""
    events = [
        MessageStart(message_id="m1"),
        MessageDelta(message_id="m1", delta="a"),
        ToolCallStart(tool_call_id="t1", tool_name="write_file", args={"path": "/x.md", "content": "x"}),
        ToolCallEnd(tool_call_id="t1", status="success"),
        MessageEnd(message_id="m1"),
        Done(),
    ]
    incremental = SessionState(session_id="s1")
    for event in events:
        apply_event(incremental, event)

    assert replay(events, SessionState(session_id="s1")).model_dump() == incremental.model_dump()
