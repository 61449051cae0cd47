"""Error taxonomy for the streaming session client."""


class StreamError(Exception):
    """Base class for all session client errors."""

    code = "stream_error"
    terminal = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class TransportError(StreamError):
    """Socket error or abnormal close."""

    code = "transport_error"


class ConnectionTimeoutError(TransportError):
    """The transport did not open (or become ready) in time."""

    code = "connect_timeout"


class AuthenticationError(StreamError):
    """The auth token was rejected by the server."""

    code = "auth_failed"
    terminal = True


class SessionNotFoundError(StreamError):
    """The bound session no longer exists server-side."""

    code = "session_not_found"
    terminal = True


class MaxReconnectAttemptsError(TransportError):
    """Reconnection gave up after the configured number of attempts."""

    code = "max_reconnect_attempts"
    terminal = True


class ServerClosedError(TransportError):
    """The server closed the connection normally."""

    code = "server_closed"
    terminal = True


class ClientClosedError(StreamError):
    """The client was closed or destroyed locally."""

    code = "client_closed"
    terminal = True


class BackendError(StreamError):
    """An ``error`` event reported by the backend mid-stream."""

    code = "backend_error"
