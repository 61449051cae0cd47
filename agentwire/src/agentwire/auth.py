"""Token handshake helpers for the WebSocket and REST transports."""

import logging
from enum import IntEnum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .exceptions import (
    AuthenticationError,
    ServerClosedError,
    SessionNotFoundError,
    StreamError,
)

logger = logging.getLogger(__name__)


class CloseCode(IntEnum):
    """WebSocket close codes with client-side meaning."""

    NORMAL = 1000
    GOING_AWAY = 1001
    ABNORMAL = 1006
    AUTH_FAILED = 4001
    FORBIDDEN = 4003
    SESSION_NOT_FOUND = 4004


def build_ws_url(base_url: str, token: str | None, session_id: str | None = None) -> str:
    """Encode the auth token and session id into the handshake URL.

    Existing query parameters on ``base_url`` are preserved; ``token`` and
    ``cid`` replace any values already present.
    """
    parts = urlsplit(base_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in ("token", "cid")
    ]
    if token:
        query.append(("token", token))
    if session_id:
        query.append(("cid", session_id))
    return urlunsplit(parts._replace(query=urlencode(query)))


def bearer_header(token: str | None) -> dict[str, str]:
    """Build the Authorization header for REST requests."""
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def terminal_close_error(code: int | None, reason: str = "") -> StreamError | None:
    """Map a terminal close code to its error, or None if recoverable."""
    if code in (CloseCode.AUTH_FAILED, CloseCode.FORBIDDEN):
        logger.warning(f"Connection rejected: invalid authentication token ({code})")
        return AuthenticationError(reason or "Invalid authentication token")
    if code == CloseCode.SESSION_NOT_FOUND:
        return SessionNotFoundError(reason or "Session not found")
    if code == CloseCode.NORMAL:
        return ServerClosedError(reason or "Connection closed by server")
    return None


def handshake_status_error(status_code: int) -> StreamError | None:
    """Map a rejected handshake HTTP status to a terminal error."""
    if status_code in (401, 403):
        return AuthenticationError(f"Handshake rejected with HTTP {status_code}")
    if status_code == 404:
        return SessionNotFoundError("Session not found")
    return None
