"""Pytest configuration and fixtures."""

import asyncio
import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedOK

from agentwire.config import Settings
from agentwire.sessions.models import SessionState
from agentwire.sessions.store import EventJournal
from agentwire.websocket.manager import ConnectionManager


class FakeTransport:
    """In-memory stand-in for a websocket connection."""

    def __init__(self, url: str):
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.closed = False
        self._frames: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(message))

    def push(self, event_type: str, data: Any = None, **extra: Any) -> None:
        """Deliver a server frame."""
        self._frames.put_nowait(json.dumps({"type": event_type, "data": data, **extra}))

    def push_raw(self, frame: str) -> None:
        self._frames.put_nowait(frame)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server closing the connection."""
        self.close_code = code
        self.close_reason = reason
        self.closed = True
        self._frames.put_nowait(None)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.drop(code, reason)

    def sent_types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> str:
        frame = await self._frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Connector handing out FakeTransports; queued failures are raised first."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.failures: list[BaseException] = []
        self.fail_always: BaseException | None = None

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)
        transport = FakeTransport(url)
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def fast_settings():
    """Settings with timings short enough for tests."""
    return Settings(
        _env_file=None,
        ws_url="ws://test/ws/chat",
        api_url="http://test/api",
        auth_token="secret",
        connect_timeout=1.0,
        heartbeat_interval=60.0,
        ready_grace_period=0.05,
        send_wait_timeout=0.5,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.04,
        max_reconnect_attempts=2,
        request_timeout=1.0,
    )


@pytest.fixture
def connector():
    """Provide a fake connector for testing."""
    return FakeConnector()


@pytest_asyncio.fixture
async def connection_manager(fast_settings, connector):
    """Provide a connection manager bound to session s1."""
    manager = ConnectionManager(fast_settings, session_id="s1", connector=connector)
    yield manager
    await manager.destroy()


@pytest.fixture
def state():
    """Provide an empty session state."""
    return SessionState(session_id="s1")


@pytest_asyncio.fixture
async def journal():
    """Create a temporary event journal for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        journal = EventJournal(Path(tmpdir) / "events.db")
        await journal.initialize()
        yield journal
        await journal.close()


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll a predicate until it holds or the timeout expires."""

    async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until
