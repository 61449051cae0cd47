"""Session state module."""

from .events import CanonicalEvent
from .extract import extract_files, extract_todos
from .models import (
    FileArtifact,
    InterruptData,
    Message,
    SessionState,
    TodoItem,
    ToolCall,
)
from .projector import apply_event, replay
from .store import EventJournal

__all__ = [
    "CanonicalEvent",
    "EventJournal",
    "FileArtifact",
    "InterruptData",
    "Message",
    "SessionState",
    "TodoItem",
    "ToolCall",
    "apply_event",
    "extract_files",
    "extract_todos",
    "replay",
]
