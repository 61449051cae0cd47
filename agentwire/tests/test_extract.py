"""Tests for todo and file extraction heuristics."""

import json

import pytest

from agentwire.sessions.extract import (
    extract_files,
    extract_todos,
    infer_language,
    normalize_file_map,
)
from agentwire.sessions.models import TodoStatus


@pytest.mark.parametrize(
    "raw",
    [
        [{"content": "a", "status": "pending"}],
        {"todos": [{"content": "a", "status": "pending"}]},
        {"todos": {"items": [{"content": "a", "status": "pending"}]}},
        {"items": [{"content": "a", "status": "pending"}]},
        json.dumps([{"content": "a", "status": "pending"}]),
    ],
)
def test_extract_todos_accepted_shapes(raw):
    """Test every recognised todo encoding."""
    todos = extract_todos(raw)

    assert len(todos) == 1
    assert todos[0].content == "a"
    assert todos[0].status == TodoStatus.PENDING


def test_extract_todos_from_python_literal_text():
    """Test a textual payload quoting its list Python-style."""
    todos = extract_todos("Updated todo list to [{'content':'a','status':'pending'}]")

    assert len(todos) == 1
    assert todos[0].content == "a"
    assert todos[0].status == TodoStatus.PENDING
    assert todos[0].id == "todo-0"


def test_extract_todos_from_mixed_quoting_text():
    """Test single-quoted keys next to JSON literals."""
    todos = extract_todos("Updated todo list to [{'content': 'a', 'status': 'done', 'flag': false}]")

    assert len(todos) == 1
    assert todos[0].content == "a"
    assert todos[0].status == TodoStatus.COMPLETED


def test_extract_todos_status_aliases():
    """Test status spellings that are not canonical."""
    todos = extract_todos(
        [
            {"content": "a", "status": "in-progress"},
            {"content": "b", "status": "done"},
            {"content": "c", "status": "mystery"},
        ]
    )

    assert [t.status for t in todos] == [
        TodoStatus.IN_PROGRESS,
        TodoStatus.COMPLETED,
        TodoStatus.PENDING,
    ]


def test_extract_todos_falls_back_to_title():
    """Test that title fills in for a missing content field."""
    todos = extract_todos([{"id": 7, "title": "write docs"}, "plain string"])

    assert todos[0].id == "7"
    assert todos[0].content == "write docs"
    assert todos[1].content == "plain string"


@pytest.mark.parametrize(
    "raw",
    [None, 42, {"other": []}, "no list here", "[not, valid, {literal"],
)
def test_extract_todos_unrecognised_returns_none(raw):
    """Test that unknown shapes yield None rather than raising."""
    assert extract_todos(raw) is None


def test_extract_files_structured_payload():
    """Test a result carrying a files map."""
    files = extract_files({"files": {"/a.md": {"content": "X"}}})

    assert files["/a.md"].content == "X"
    assert files["/a.md"].editable is True
    assert files["/a.md"].language == "markdown"


def test_extract_files_nested_result():
    """Test files nested one level under result.result."""
    files = extract_files({"result": {"files": {"/b.py": {"content": "pass", "language": "py3"}}}})

    assert files["/b.py"].content == "pass"
    assert files["/b.py"].language == "py3"


def test_extract_files_json_string_result():
    """Test a result delivered as a JSON string."""
    files = extract_files(json.dumps({"files": {"/c.txt": "hello"}}))

    assert files["/c.txt"].content == "hello"


def test_extract_files_from_write_tool_arguments():
    """Test a successful write_file call without a files payload."""
    files = extract_files(
        "ok",
        tool_name="write_file",
        args={"file_path": "/notes.md", "content": "# Notes"},
    )

    assert files["/notes.md"].content == "# Notes"
    assert files["/notes.md"].editable is True


def test_extract_files_ignores_failed_write():
    """Test that a failed write contributes nothing."""
    files = extract_files(
        "denied",
        tool_name="write_file",
        args={"file_path": "/notes.md", "content": "# Notes"},
        succeeded=False,
    )

    assert files == {}


def test_extract_files_other_tools_ignore_arguments():
    """Test that only file-write tools read their arguments."""
    assert extract_files("ok", tool_name="read_file", args={"path": "/a", "content": "x"}) == {}


def test_normalize_file_map_encodings():
    """Test string, line-list and object file encodings."""
    files = normalize_file_map(
        {
            "/a.txt": "plain",
            "/b.ts": {"content": ["line1", "line2"]},
            "/empty": {"content": ""},
            "/bad": 12,
        }
    )

    assert files["/a.txt"].content == "plain"
    assert files["/b.ts"].content == "line1\nline2"
    assert files["/b.ts"].language == "typescript"
    assert "/empty" not in files
    assert "/bad" not in files


@pytest.mark.parametrize(
    "path, language",
    [("/x/readme.md", "markdown"), ("main.PY", "python"), ("Makefile", "text"), ("a.unknown", "text")],
)
def test_infer_language(path, language):
    """Test extension-based language inference."""
    assert infer_language(path) == language
