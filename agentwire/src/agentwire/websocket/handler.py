"""WebSocket event handler.

Read side of the client: every inbound frame is normalized, folded into the
session state, announced to the registered callbacks and, when a journal is
configured, recorded. Client-originated intents enter through ``dispatch``
so they follow the same path.
"""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..exceptions import BackendError
from ..sessions.events import CanonicalEvent
from ..sessions.models import SessionState
from ..sessions.projector import apply_event
from ..sessions.store import EventJournal
from .manager import ConnectionManager
from .normalizer import normalize

logger = logging.getLogger(__name__)

_READY_EVENTS = ("connected", "session-state-snapshot")


@dataclass
class SessionCallbacks:
    """Callbacks for the rendering layer; any of them may be a coroutine."""

    on_state_change: Callable[[SessionState], Any] | None = None
    on_message_complete: Callable[[Any], Any] | None = None
    on_file_operation: Callable[[Any], Any] | None = None
    on_interrupt: Callable[[Any], Any] | None = None
    on_done: Callable[[str | None], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None
    on_connect: Callable[[], Any] | None = None
    on_disconnect: Callable[[int, str], Any] | None = None
    on_connection_state: Callable[[Any], Any] | None = None
    on_reconnect_status: Callable[[Any], Any] | None = None


class WebSocketHandler:
    """Routes canonical events to the projector, callbacks and journal."""

    def __init__(
        self,
        state: SessionState,
        manager: ConnectionManager,
        callbacks: SessionCallbacks | None = None,
        journal: EventJournal | None = None,
    ):
        self.state = state
        self.manager = manager
        self.callbacks = callbacks or SessionCallbacks()
        self.journal = journal

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def handle_frame(self, frame: str | bytes) -> CanonicalEvent | None:
        """Process one wire frame; returns the canonical event, if any."""
        event = normalize(frame)
        if event is None:
            return None
        if event.kind in _READY_EVENTS:
            self.manager.acknowledge_ready()
        await self.dispatch(event)
        return event

    async def dispatch(self, event: CanonicalEvent) -> None:
        """Apply an event to the state, then notify and record it."""
        completed = None
        if event.kind == "message-end":
            message = self.state.find_message(event.message_id)
            if message is not None and message.is_streaming:
                completed = message

        try:
            apply_event(self.state, event)
        except Exception:
            logger.exception(f"Error applying {event.kind} event")
            return

        handlers = {
            "message-end": lambda: (
                self.notify("on_message_complete", completed) if completed else None
            ),
            "file-operation": lambda: self.notify("on_file_operation", event),
            "interrupt": lambda: self.notify("on_interrupt", event.interrupt),
            "done": lambda: self.notify("on_done", event.reason),
            "error": lambda: self.notify(
                "on_error", BackendError(event.message, code=event.code)
            ),
        }
        handler = handlers.get(event.kind)
        pending = handler() if handler else None
        if pending is not None:
            await pending
        await self.notify("on_state_change", self.state)

        await self._record(event)

    # =========================================================================
    # Callbacks
    # =========================================================================

    async def notify(self, name: str, *args: Any) -> None:
        """Invoke a callback; a raising callback is logged, never propagated."""
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Error in {name} callback")

    async def _record(self, event: CanonicalEvent) -> None:
        if self.journal is None:
            return
        session_id = self.state.session_id or self.manager.session_id
        if not session_id:
            return
        try:
            await self.journal.record(session_id, event)
        except Exception:
            logger.exception(f"Failed to journal {event.kind} event")
