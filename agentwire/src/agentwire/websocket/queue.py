"""Outbound queue: buffers client messages until the server is ready."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .events import ClientMessage

logger = logging.getLogger(__name__)


@dataclass
class QueuedMessage:
    """A pending send and the future its caller is awaiting."""

    payload: ClientMessage
    future: asyncio.Future[None]


class OutboundQueue:
    """FIFO buffer in front of the transport.

    ``sender`` performs the actual transport write; ``is_ready`` reports
    whether the connection is open and acknowledged by the server.
    """

    def __init__(
        self,
        sender: Callable[[ClientMessage], Awaitable[None]],
        is_ready: Callable[[], bool],
    ):
        self._sender = sender
        self._is_ready = is_ready
        self._pending: deque[QueuedMessage] = deque()
        self._flushing = False

    def __len__(self) -> int:
        return len(self._pending)

    def submit(self, message: ClientMessage) -> asyncio.Future[None]:
        """Buffer a message and return the future settled when it is sent."""
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending.append(QueuedMessage(payload=message, future=future))
        logger.debug(f"Queued {message.type} ({len(self._pending)} pending)")
        return future

    async def enqueue(self, message: ClientMessage) -> None:
        """Send now if ready and nothing is waiting, otherwise wait for the flush."""
        if self._is_ready() and not self._pending and not self._flushing:
            await self._sender(message)
            return
        future = self.submit(message)
        if self._is_ready():
            await self.flush()
        await future

    async def flush(self) -> None:
        """Send buffered messages in arrival order while the server stays ready."""
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._pending and self._is_ready():
                item = self._pending.popleft()
                if item.future.done():
                    # Caller gave up waiting
                    continue
                try:
                    await self._sender(item.payload)
                except Exception as e:
                    logger.warning(f"Failed to send queued {item.payload.type}: {e}")
                    if not item.future.done():
                        item.future.set_exception(e)
                    continue
                if not item.future.done():
                    item.future.set_result(None)
        finally:
            self._flushing = False

    def reject_all(self, error: BaseException) -> None:
        """Fail every buffered send with ``error``."""
        if self._pending:
            logger.info(f"Rejecting {len(self._pending)} queued message(s): {error}")
        while self._pending:
            item = self._pending.popleft()
            if not item.future.done():
                item.future.set_exception(error)
