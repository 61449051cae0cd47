"""WebSocket connection manager.

Owns the single chat socket of a client: the connection state machine, the
heartbeat, the optimistic readiness window and the reconnection policy.
Frames are handed to ``ConnectionHandlers.on_frame`` strictly in receipt
order; outbound traffic goes through the :class:`OutboundQueue`.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from ..auth import CloseCode, build_ws_url, handshake_status_error, terminal_close_error
from ..config import Settings, settings as default_settings
from ..exceptions import (
    ClientClosedError,
    ConnectionTimeoutError,
    MaxReconnectAttemptsError,
    ServerClosedError,
    StreamError,
    TransportError,
)
from .events import BindSessionData, ClientMessage
from .queue import OutboundQueue

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Physical connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ReconnectStatus(str, Enum):
    """Progress of the reconnection policy."""

    IDLE = "idle"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"


TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
            ConnectionState.RECONNECTING,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.RECONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}
    ),
}


class Transport(Protocol):
    """The parts of a websocket connection the manager relies on."""

    close_code: int | None
    close_reason: str | None

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[[str], Awaitable[Transport]]


async def websocket_connector(url: str) -> Transport:
    """Open a chat socket; keepalive is handled by the manager's heartbeat."""
    return await websockets.connect(url, ping_interval=None)


@dataclass
class ConnectionHandlers:
    """Callbacks invoked by the manager; any of them may be a coroutine."""

    on_frame: Callable[[str | bytes], Any] | None = None
    on_connect: Callable[[], Any] | None = None
    on_disconnect: Callable[[int, str], Any] | None = None
    on_error: Callable[[StreamError], Any] | None = None
    on_state_change: Callable[[ConnectionState], Any] | None = None
    on_reconnect_status: Callable[[ReconnectStatus], Any] | None = None


class ConnectionManager:
    """Manages the chat WebSocket connection for one client."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token: str | None = None,
        session_id: str | None = None,
        connector: Connector | None = None,
        handlers: ConnectionHandlers | None = None,
    ):
        self.settings = settings or default_settings
        self._token = token if token is not None else self.settings.auth_token
        self._session_id = session_id
        self._connector = connector or websocket_connector
        self._handlers = handlers or ConnectionHandlers()

        self._ws: Transport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_status = ReconnectStatus.IDLE
        self._server_ready = False
        self._attempt = 0
        self._epoch = 0
        self._destroyed = False
        # Error codes already reported in the current disconnect cycle
        self._reported: set[str] = set()

        self._ready = asyncio.Event()
        self._stopped = asyncio.Event()
        self._open_task: asyncio.Task[bool] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._grace_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self.queue = OutboundQueue(self._send_now, lambda: self.is_ready)

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_status(self) -> ReconnectStatus:
        return self._reconnect_status

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def server_ready(self) -> bool:
        return self._server_ready

    @property
    def is_ready(self) -> bool:
        """Open and acknowledged (explicitly or optimistically) by the server."""
        return self._state == ConnectionState.CONNECTED and self._server_ready

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def set_handlers(self, handlers: ConnectionHandlers) -> None:
        """Replace the callbacks without touching the socket."""
        self._handlers = handlers

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff before reconnect ``attempt`` (0-based), capped."""
        return min(
            self.settings.reconnect_base_delay * 2**attempt,
            self.settings.reconnect_max_delay,
        )

    # ========================================================================
    # Public API
    # ========================================================================

    async def connect(self, session_id: str | None = None, force: bool = False) -> bool:
        """Open the socket for ``session_id``, or rebind the open one.

        Returns True once the transport is open. Failures are reported through
        ``on_error``; recoverable ones schedule a reconnect.
        """
        if self._destroyed:
            raise ClientClosedError("Connection manager destroyed")

        handshaking = self._open_task is not None and not self._open_task.done()
        if (
            session_id is not None
            and session_id != self._session_id
            and (self.is_open or handshaking)
        ):
            if not force:
                # The open socket, or the one being opened, is bound to the old id
                await self.rebind(session_id)
                if handshaking and self._open_task is not None:
                    return await asyncio.shield(self._open_task)
                return True
            logger.info(f"Hard reconnect requested for session {session_id}")
            await self.close(silent=True)

        if session_id is not None:
            self._session_id = session_id
        if self._state == ConnectionState.CONNECTED:
            return True
        if self._open_task is not None and not self._open_task.done():
            return await asyncio.shield(self._open_task)

        if self._reconnect_task is not None:
            # Skip the remaining backoff and try now
            self._reconnect_task.cancel()
            self._reconnect_task = None

        self._stopped.clear()
        if self._state == ConnectionState.DISCONNECTED:
            self._reported.clear()
            self._transition(ConnectionState.CONNECTING)
        return await self._start_open()

    async def rebind(self, session_id: str) -> None:
        """Switch the logical session without reopening the socket."""
        if session_id == self._session_id:
            return
        logger.info(f"Rebinding session {self._session_id} -> {session_id}")
        self._session_id = session_id
        bind = ClientMessage(type="bind_session", data=BindSessionData(session_id=session_id))

        if self.is_ready:
            await self._send_now(bind)
        elif self.is_open or (self._open_task is not None and not self._open_task.done()):
            future = self.queue.submit(bind)
            future.add_done_callback(_log_dropped_send)
        # Otherwise the next connect carries the new id in its URL

    async def send(self, message: ClientMessage) -> None:
        """Send now when ready, otherwise wait in the outbound queue."""
        if self._destroyed:
            raise ClientClosedError("Connection manager destroyed")
        if self._state == ConnectionState.DISCONNECTED:
            raise TransportError("Not connected")
        await self.queue.enqueue(message)

    def acknowledge_ready(self) -> None:
        """Handle the server's explicit ready acknowledgment."""
        if self._state != ConnectionState.CONNECTED:
            return
        self._cancel(self._grace_task)
        self._grace_task = None
        self._mark_ready()

    async def wait_ready(self, timeout: float) -> bool:
        """Wait until ready, giving up on timeout or terminal failure."""
        if self.is_ready:
            return True
        waiters = [
            asyncio.ensure_future(self._ready.wait()),
            asyncio.ensure_future(self._stopped.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.is_ready

    async def close(self, silent: bool = False) -> None:
        """Close the socket without reconnecting and reject queued sends.

        A silent close (process shutdown, hard reconnect) does not invoke
        ``on_disconnect``.
        """
        self._epoch += 1
        # A handshake still in flight sees the epoch change and discards itself
        self._open_task = None
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._stop_timers()

        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None
        await self._cancel_and_wait(reader)

        self._server_ready = False
        self._ready.clear()
        self._stopped.set()

        if ws is not None:
            try:
                await ws.close(code=CloseCode.NORMAL, reason="client closed")
            except (WebSocketException, OSError) as e:
                logger.debug(f"Error while closing WebSocket: {e}")
            logger.info("WebSocket closed by client")

        self._transition(ConnectionState.DISCONNECTED)
        self._set_reconnect_status(ReconnectStatus.IDLE)
        self.queue.reject_all(ClientClosedError("Connection closed by client"))
        if ws is not None and not silent:
            self._emit("on_disconnect", int(CloseCode.NORMAL), "client closed")

    async def destroy(self) -> None:
        """Tear down for good: no callback fires after this returns."""
        if self._destroyed:
            return
        self._destroyed = True
        self._handlers = ConnectionHandlers()
        await self.close(silent=True)
        for task in list(self._background):
            await self._cancel_and_wait(task)
        logger.debug("Connection manager destroyed")

    # ========================================================================
    # Opening
    # ========================================================================

    async def _start_open(self) -> bool:
        self._open_task = asyncio.create_task(self._open(self._epoch))
        return await asyncio.shield(self._open_task)

    async def _open(self, epoch: int) -> bool:
        url = build_ws_url(self.settings.ws_url, self._token, self._session_id)
        logger.info(
            f"Connecting to {self.settings.ws_url} "
            f"(session={self._session_id}, attempt={self._attempt})"
        )
        timeout = self.settings.connect_timeout
        error: StreamError
        try:
            ws = await asyncio.wait_for(self._connector(url), timeout=timeout)
        except asyncio.TimeoutError:
            error = ConnectionTimeoutError(f"Connection timed out after {timeout}s")
        except InvalidStatus as e:
            status = e.response.status_code
            error = handshake_status_error(status) or TransportError(
                f"Handshake rejected with HTTP {status}"
            )
        except (WebSocketException, OSError) as e:
            error = TransportError(f"Connection failed: {e}")
        else:
            if epoch != self._epoch:
                # Closed while the handshake was in flight
                await ws.close(code=CloseCode.NORMAL, reason="client closed")
                return False
            self._on_open(ws)
            return True

        if epoch == self._epoch:
            self._on_open_failed(error)
        return False

    def _on_open(self, ws: Transport) -> None:
        self._ws = ws
        self._attempt = 0
        self._server_ready = False
        self._reported.clear()
        self._transition(ConnectionState.CONNECTED)
        self._set_reconnect_status(ReconnectStatus.IDLE)
        logger.info(f"WebSocket connected (session={self._session_id})")

        self._reader_task = asyncio.create_task(self._read_loop(ws))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._grace_task = asyncio.create_task(self._ready_grace())

    def _on_open_failed(self, error: StreamError) -> None:
        logger.warning(f"Connection attempt failed: {error}")
        if error.terminal:
            self._fail(error)
            return
        self._report(error)
        self._schedule_reconnect()

    async def _ready_grace(self) -> None:
        await asyncio.sleep(self.settings.ready_grace_period)
        self._grace_task = None
        if self._state == ConnectionState.CONNECTED and not self._server_ready:
            logger.info(
                f"No ready acknowledgment within {self.settings.ready_grace_period}s, "
                "assuming server is ready"
            )
            self._mark_ready()

    def _mark_ready(self) -> None:
        first = not self._server_ready
        self._server_ready = True
        self._ready.set()
        self._spawn(self.queue.flush())
        if first:
            self._emit("on_connect")

    # ========================================================================
    # Reading and heartbeat
    # ========================================================================

    async def _read_loop(self, ws: Transport) -> None:
        try:
            async for frame in ws:
                await self._deliver(frame)
        except ConnectionClosed:
            pass
        except (WebSocketException, OSError) as e:
            logger.warning(f"WebSocket receive failed: {e}")
            self._report(TransportError(f"Receive failed: {e}"))

        if self._ws is ws:
            self._reader_task = None
            self._handle_close(ws.close_code, ws.close_reason or "")

    async def _deliver(self, frame: str | bytes) -> None:
        handler = self._handlers.on_frame
        if handler is None:
            return
        try:
            result = handler(frame)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error handling frame")

    async def _heartbeat_loop(self) -> None:
        interval = self.settings.heartbeat_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self._send_now(ClientMessage(type="ping"))
            except TransportError as e:
                logger.warning(f"Heartbeat failed: {e}")
                return

    async def _send_now(self, message: ClientMessage) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError("Not connected")
        try:
            await ws.send(message.to_json())
        except (WebSocketException, OSError) as e:
            raise TransportError(f"Send failed: {e}") from e

    # ========================================================================
    # Closing and reconnection
    # ========================================================================

    def _handle_close(self, code: int | None, reason: str) -> None:
        code = code if code is not None else int(CloseCode.ABNORMAL)
        logger.info(f"WebSocket closed (code={code}, reason={reason or '-'})")
        self._stop_timers()
        self._ws = None
        self._server_ready = False
        self._ready.clear()
        self._emit("on_disconnect", code, reason)

        error = terminal_close_error(code, reason)
        if error is not None:
            self._fail(error, report=not isinstance(error, ServerClosedError))
            return
        self._report(TransportError(f"Connection lost (code={code})"))
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        limit = self.settings.max_reconnect_attempts
        if self._attempt >= limit:
            logger.warning(f"Giving up after {limit} reconnect attempts")
            self._fail(MaxReconnectAttemptsError(f"Gave up after {limit} reconnect attempts"))
            return

        delay = self.reconnect_delay(self._attempt)
        self._attempt += 1
        self._transition(ConnectionState.RECONNECTING)
        self._set_reconnect_status(ReconnectStatus.RECONNECTING)
        logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._attempt}/{limit})")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        await self._start_open()

    def _fail(self, error: StreamError, report: bool = True) -> None:
        """Terminal failure: stop reconnecting and reject every queued send."""
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._transition(ConnectionState.DISCONNECTED)
        if isinstance(error, MaxReconnectAttemptsError):
            self._set_reconnect_status(ReconnectStatus.MAX_ATTEMPTS_REACHED)
        elif isinstance(error, ServerClosedError):
            self._set_reconnect_status(ReconnectStatus.IDLE)
        else:
            self._set_reconnect_status(ReconnectStatus.FAILED)
        if report:
            self._report(error)
        self.queue.reject_all(error)
        self._stopped.set()

    # ========================================================================
    # Helpers
    # ========================================================================

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        if new_state not in TRANSITIONS[self._state]:
            logger.warning(f"Ignoring invalid transition {self._state.value} -> {new_state.value}")
            return
        logger.debug(f"Connection state {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._emit("on_state_change", new_state)

    def _set_reconnect_status(self, status: ReconnectStatus) -> None:
        if status == self._reconnect_status:
            return
        self._reconnect_status = status
        self._emit("on_reconnect_status", status)

    def _report(self, error: StreamError) -> None:
        """Surface an error at most once per error code per disconnect cycle."""
        if error.code in self._reported:
            logger.debug(f"Suppressing repeated {error.code}: {error}")
            return
        self._reported.add(error.code)
        self._emit("on_error", error)

    def _emit(self, name: str, *args: Any) -> None:
        handler = getattr(self._handlers, name)
        if handler is None:
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                self._spawn(result)
        except Exception:
            logger.exception(f"Error in {name} handler")

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_error)

    def _stop_timers(self) -> None:
        for task in (self._heartbeat_task, self._grace_task):
            self._cancel(task)
        self._heartbeat_task = None
        self._grace_task = None

    @staticmethod
    def _cancel(task: asyncio.Task[Any] | None) -> None:
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    async def _cancel_and_wait(task: asyncio.Task[Any] | None) -> None:
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def _log_task_error(task: asyncio.Task[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Background task failed: {task.exception()!r}")


def _log_dropped_send(future: asyncio.Future[None]) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"Queued bind was not delivered: {future.exception()}")
