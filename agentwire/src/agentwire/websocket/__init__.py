"""WebSocket module for real-time communication."""

from .events import ClientMessage, ServerEnvelope
from .handler import SessionCallbacks, WebSocketHandler
from .manager import (
    ConnectionHandlers,
    ConnectionManager,
    ConnectionState,
    ReconnectStatus,
)
from .normalizer import normalize
from .queue import OutboundQueue

__all__ = [
    "ClientMessage",
    "ConnectionHandlers",
    "ConnectionManager",
    "ConnectionState",
    "OutboundQueue",
    "ReconnectStatus",
    "ServerEnvelope",
    "SessionCallbacks",
    "WebSocketHandler",
    "normalize",
]
