"""Session client: the public entry point for one agent conversation.

Wires the connection manager (transport), the WebSocket handler (normalize,
project, notify) and the optional REST client and event journal together.
All conversation state changes, including the client's own intents, flow
through the projector as canonical events.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any

from .config import Settings, settings as default_settings
from .exceptions import ConnectionTimeoutError, StreamError
from .rest import APIError, SessionApiClient
from .sessions.events import (
    ClientErrorRaised,
    ConversationReset,
    GenerationStopped,
    InterruptResumed,
    SessionSnapshot,
    UserMessageSent,
)
from .sessions.models import Message, MessageRole, SessionState
from .sessions.store import EventJournal
from .websocket.events import (
    Attachment,
    ClientMessage,
    ResumeInterruptData,
    UserMessageData,
    now_ms,
)
from .websocket.handler import SessionCallbacks, WebSocketHandler
from .websocket.manager import (
    ConnectionHandlers,
    ConnectionManager,
    ConnectionState,
    Connector,
    ReconnectStatus,
)

logger = logging.getLogger(__name__)


class SessionClient:
    """Streaming client for a single logical session.

    Usage::

        async with SessionClient(session_id="abc") as client:
            await client.connect()
            await client.send_message("Hello")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token: str | None = None,
        session_id: str | None = None,
        callbacks: SessionCallbacks | None = None,
        connector: Connector | None = None,
        api: SessionApiClient | None = None,
        journal: EventJournal | None = None,
    ):
        self.settings = settings or default_settings
        self.api = api
        self.journal = journal
        self._state = SessionState(session_id=session_id)
        self._last_error: StreamError | None = None

        self.manager = ConnectionManager(
            self.settings, token=token, session_id=session_id, connector=connector
        )
        self.handler = WebSocketHandler(self._state, self.manager, callbacks, journal)
        self.manager.set_handlers(
            ConnectionHandlers(
                on_frame=self.handler.handle_frame,
                on_connect=lambda: self.handler.notify("on_connect"),
                on_disconnect=lambda code, reason: self.handler.notify(
                    "on_disconnect", code, reason
                ),
                on_error=self._on_transport_error,
                on_state_change=lambda state: self.handler.notify(
                    "on_connection_state", state
                ),
                on_reconnect_status=lambda status: self.handler.notify(
                    "on_reconnect_status", status
                ),
            )
        )

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def state(self) -> SessionState:
        """Projected conversation state; mutated in place as events arrive."""
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._state.session_id or self.manager.session_id

    @property
    def connection_state(self) -> ConnectionState:
        return self.manager.state

    @property
    def reconnect_status(self) -> ReconnectStatus:
        return self.manager.reconnect_status

    @property
    def is_ready(self) -> bool:
        return self.manager.is_ready

    def set_callbacks(self, callbacks: SessionCallbacks) -> None:
        """Replace the callbacks without reconnecting."""
        self.handler.callbacks = callbacks

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self, session_id: str | None = None) -> bool:
        """Connect, or move an open connection to ``session_id``."""
        if session_id is not None and session_id != self.session_id:
            await self.switch_session(session_id)
            if self.manager.is_open:
                return True
        if session_id is not None and self._state.session_id is None:
            self._state.session_id = session_id
        return await self.manager.connect(session_id)

    async def switch_session(self, session_id: str, hard: bool = False) -> None:
        """Clear the conversation and bind to another session.

        The socket stays open unless ``hard`` asks for a full reconnect.
        """
        if session_id == self.session_id and not hard:
            return
        logger.info(f"Switching session {self.session_id} -> {session_id} (hard={hard})")
        await self.handler.dispatch(ConversationReset(session_id=session_id, timestamp=now_ms()))
        if self.manager.state == ConnectionState.DISCONNECTED:
            await self.manager.rebind(session_id)
        else:
            await self.manager.connect(session_id, force=hard)

    async def load_history(self, session_id: str | None = None) -> SessionState:
        """Fetch a conversation over REST and project it as a snapshot."""
        if self.api is None:
            raise RuntimeError("No REST client configured")
        session_id = session_id or self.session_id
        if not session_id:
            raise ValueError("No session to load")

        detail = await self.api.get_session(session_id)
        if session_id != self._state.session_id:
            await self.handler.dispatch(ConversationReset(session_id=session_id))
        await self.handler.dispatch(
            SessionSnapshot(
                messages=detail.messages,
                todos=detail.todos,
                files=detail.files,
                timestamp=now_ms(),
            )
        )
        return self._state

    async def close(self) -> None:
        """Close the connection; queued sends are rejected."""
        await self.manager.close()

    async def destroy(self) -> None:
        """Tear everything down; no callback fires afterwards."""
        self.handler.callbacks = SessionCallbacks()
        await self.manager.destroy()

    # =========================================================================
    # Write side
    # =========================================================================

    async def send_message(
        self, content: str, attachments: list[Attachment | dict[str, Any]] | None = None
    ) -> str:
        """Send a user message and return its local id.

        The message is appended to the state immediately. When disconnected,
        the client reconnects first and waits a bounded time for readiness.
        """
        if not content.strip():
            raise ValueError("Message content is empty")

        if self.manager.state == ConnectionState.DISCONNECTED:
            await self._reconnect_for_send()

        message = Message(
            id=f"user-{uuid.uuid4().hex}",
            session_id=self.session_id,
            role=MessageRole.USER,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        await self.handler.dispatch(UserMessageSent(message=message, timestamp=now_ms()))

        payload = ClientMessage(
            type="user_message",
            data=UserMessageData(
                content=content,
                attachments=[Attachment.model_validate(a) for a in attachments]
                if attachments
                else None,
            ),
        )
        try:
            await self.manager.send(payload)
        except StreamError as e:
            await self.handler.dispatch(ClientErrorRaised(message=e.message, code=e.code))
            raise
        return message.id

    async def resume_interrupt(self, decision: Any) -> None:
        """Answer the active interrupt."""
        interrupt = self._state.interrupt
        if interrupt is None:
            logger.warning("resume_interrupt called without an active interrupt")
            return
        interrupt_id = interrupt.id or ""

        if self._use_http_fallback():
            await self.api.resume_interrupt(self.session_id, interrupt_id, decision)
        else:
            await self.manager.send(
                ClientMessage(
                    type="resume_interrupt",
                    data=ResumeInterruptData(interrupt_id=interrupt_id, decision=decision),
                )
            )
        await self.handler.dispatch(
            InterruptResumed(interrupt_id=interrupt.id, timestamp=now_ms())
        )

    async def stop(self) -> None:
        """Ask the backend to stop the current turn.

        Advisory only: pending local sends are not cancelled.
        """
        try:
            if self._use_http_fallback():
                await self.api.stop(self.session_id)
            else:
                await self.manager.send(ClientMessage(type="stop"))
        except (StreamError, APIError) as e:
            logger.warning(f"Stop request failed: {e}")
        await self.handler.dispatch(GenerationStopped(timestamp=now_ms()))

    # =========================================================================
    # Internals
    # =========================================================================

    def _use_http_fallback(self) -> bool:
        return (
            self.api is not None
            and self.manager.state == ConnectionState.DISCONNECTED
            and bool(self.session_id)
        )

    async def _reconnect_for_send(self) -> None:
        self._last_error = None
        budget = self.settings.send_wait_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        # The handshake may outlive the budget; it keeps running in the background
        connecting = asyncio.ensure_future(self.manager.connect())
        await asyncio.wait({connecting}, timeout=budget)
        if connecting.done():
            connecting.result()
        if await self.manager.wait_ready(max(0.0, deadline - loop.time())):
            return
        error = self._last_error
        if error is None or not error.terminal:
            error = ConnectionTimeoutError(
                f"Connection not ready after {self.settings.send_wait_timeout}s"
            )
        await self.handler.dispatch(ClientErrorRaised(message=error.message, code=error.code))
        raise error

    def _on_transport_error(self, error: StreamError) -> Awaitable[None]:
        self._last_error = error
        return self._announce_error(error)

    async def _announce_error(self, error: StreamError) -> None:
        await self.handler.dispatch(
            ClientErrorRaised(message=error.message, code=error.code, ends_turn=error.terminal)
        )
        await self.handler.notify("on_error", error)
