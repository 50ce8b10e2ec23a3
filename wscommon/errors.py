from __future__ import annotations
from typing import Optional


class WebSocketClientError(Exception):
    """Base class for every error raised by the client engine."""
    pass


class InvalidEndpoint(WebSocketClientError, ValueError):
    """Raised when a URI is malformed or does not use ws:// or wss://."""
    pass


class ConnectFailed(WebSocketClientError, ConnectionError):
    """Raised when the transport to the target (or proxy) cannot be opened."""
    pass


class ProxyTunnelFailed(ConnectFailed):
    """Raised when the proxy answers CONNECT with anything but 200."""

    def __init__(self, message: str, *, status: Optional[int] = None, response: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.response = response

    def __str__(self) -> str:
        base = super().__str__()
        if self.response:
            return f"{base}\nResponse:\n{self.response}"
        return base


class HandshakeRejected(ConnectFailed):
    """Raised when the server does not answer the upgrade with 101."""

    def __init__(self, message: str, *, status: Optional[int] = None, response: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.response = response


class AcceptMismatch(HandshakeRejected):
    """Raised when Sec-WebSocket-Accept does not match the key we sent."""

    def __init__(self, message: str, *, expected: str, response: str = "") -> None:
        super().__init__(message, status=101, response=response)
        self.expected = expected


class NotConnected(WebSocketClientError):
    """Raised by send() while no connection is live."""
    pass


class DecodeError(WebSocketClientError):
    """Raised when an incoming frame is truncated or malformed."""
    pass
