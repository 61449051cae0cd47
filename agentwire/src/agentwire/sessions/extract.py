"""Heuristic extraction of todos and files from tool results.

Every function here is total: unrecognised or malformed input yields
``None`` (todos) or an empty mapping (files), never an exception.
"""

import ast
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from .models import FileArtifact, TodoItem

logger = logging.getLogger(__name__)

# Tools whose successful arguments describe a whole written file
FILE_WRITE_TOOLS = frozenset({"write_file"})

# Tools whose results carry the full task list
TODO_TOOLS = frozenset({"write_todos"})

LANGUAGE_BY_EXTENSION = {
    "md": "markdown",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "json": "json",
    "html": "html",
    "css": "css",
    "yaml": "yaml",
    "yml": "yaml",
    "sh": "shell",
    "sql": "sql",
    "txt": "text",
}

_BRACKETED = re.compile(r"\[[\s\S]*\]")
_PY_LITERALS = re.compile(r"\b(?:True|False|None)\b")
_JSON_LITERALS = {"True": "true", "False": "false", "None": "null"}


def infer_language(path: str) -> str:
    """Guess a highlighting language from a file extension."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return "text"
    return LANGUAGE_BY_EXTENSION.get(name.rsplit(".", 1)[-1].lower(), "text")


# ============================================================================
# Todos
# ============================================================================


def extract_todos(raw: Any) -> list[TodoItem] | None:
    """Extract a full task list from a loosely-shaped payload.

    Accepted shapes: a bare list, ``{"todos": [...]}``, ``{"todos":
    {"items": [...]}}``, ``{"items": [...]}``, or text containing a
    bracketed list (JSON or Python literal quoting). Returns None when the
    shape is not recognised so the caller keeps its previous list.
    """
    try:
        items = _todo_list(raw)
        if items is None:
            return None
        return [todo for i, entry in enumerate(items) if (todo := _todo(entry, i))]
    except (ValidationError, TypeError, ValueError) as e:
        logger.debug(f"Could not extract todos: {e}")
        return None


def _todo_list(raw: Any) -> list[Any] | None:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        todos = raw.get("todos")
        if isinstance(todos, list):
            return todos
        if isinstance(todos, dict) and isinstance(todos.get("items"), list):
            return todos["items"]
        if isinstance(raw.get("items"), list):
            return raw["items"]
        return None
    if isinstance(raw, str):
        return _parse_textual_list(raw)
    return None


def _parse_textual_list(text: str) -> list[Any] | None:
    stripped = text.strip()
    if stripped[:1] in ("{", "["):
        try:
            decoded = json.loads(stripped)
        except ValueError:
            pass
        else:
            if isinstance(decoded, (list, dict)):
                return _todo_list(decoded)

    match = _BRACKETED.search(text)
    if not match:
        return None
    literal = match.group(0)
    try:
        parsed = json.loads(literal)
    except ValueError:
        try:
            # Python reprs use single quotes and True/False/None
            parsed = ast.literal_eval(literal)
        except (ValueError, SyntaxError, MemoryError, RecursionError):
            parsed = _swap_quotes(literal)
    return parsed if isinstance(parsed, list) else None


def _swap_quotes(literal: str) -> Any:
    """Last resort for mixed quoting: single quotes and Python literals to JSON."""
    converted = _PY_LITERALS.sub(lambda m: _JSON_LITERALS[m.group(0)], literal.replace("'", '"'))
    try:
        return json.loads(converted)
    except ValueError:
        return None


def _todo(entry: Any, index: int) -> TodoItem | None:
    if isinstance(entry, str):
        return TodoItem(id=f"todo-{index}", content=entry)
    if not isinstance(entry, dict):
        return None
    data = dict(entry)
    if not data.get("content"):
        data["content"] = data.get("title") or data.get("description") or ""
    data["content"] = str(data["content"])
    data["id"] = str(data.get("id") or f"todo-{index}")
    return TodoItem.model_validate(data)


# ============================================================================
# Files
# ============================================================================


def extract_files(
    result: Any,
    *,
    tool_name: str | None = None,
    args: dict[str, Any] | None = None,
    succeeded: bool = True,
) -> dict[str, FileArtifact]:
    """Extract file artifacts from a tool call.

    Structured ``{"files": {path: {content, language}}}`` payloads, directly
    on the result or nested under ``result["result"]``, win. Otherwise a
    successful call to a file-write tool contributes its ``file_path`` and
    ``content`` arguments. Both paths produce editable artifacts.
    """
    try:
        files = _structured_files(result)
        if not files and succeeded and tool_name in FILE_WRITE_TOOLS:
            files = _files_from_args(args)
        return files
    except (ValidationError, TypeError, ValueError) as e:
        logger.debug(f"Could not extract files from {tool_name or 'tool'} result: {e}")
        return {}


def normalize_file_map(raw: Any) -> dict[str, FileArtifact]:
    """Convert a ``{path: content | {content, language}}`` map to artifacts."""
    if not isinstance(raw, dict):
        return {}
    files: dict[str, FileArtifact] = {}
    for path, entry in raw.items():
        artifact = file_artifact(str(path), entry)
        if artifact is not None:
            files[artifact.path] = artifact
    return files


def file_artifact(path: str, entry: Any) -> FileArtifact | None:
    """Build one artifact from a string, line list or ``{content}`` entry."""
    language = None
    if isinstance(entry, dict):
        language = entry.get("language")
        content = entry.get("content")
    else:
        content = entry
    if isinstance(content, list):
        content = "\n".join(str(line) for line in content)
    if not isinstance(content, str) or not content:
        return None
    return FileArtifact(
        path=path,
        content=content,
        language=language if isinstance(language, str) else infer_language(path),
        editable=True,
    )


def _structured_files(result: Any) -> dict[str, FileArtifact]:
    if isinstance(result, str) and result.lstrip().startswith("{"):
        try:
            result = json.loads(result)
        except ValueError:
            return {}
    if not isinstance(result, dict):
        return {}
    files = result.get("files")
    if not isinstance(files, dict) and isinstance(result.get("result"), dict):
        files = result["result"].get("files")
    return normalize_file_map(files)


def _files_from_args(args: dict[str, Any] | None) -> dict[str, FileArtifact]:
    if not isinstance(args, dict):
        return {}
    path = args.get("file_path") or args.get("path")
    content = args.get("content")
    if not isinstance(path, str) or not path or not isinstance(content, str) or not content:
        return {}
    return {
        path: FileArtifact(
            path=path, content=content, language=infer_language(path), editable=True
        )
    }
