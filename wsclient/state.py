from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ConnectionState(str, Enum):
    """Lifecycle of a WebSocketClient."""

    DISCONNECTED = "DISCONNECTED"   # initial, and terminal after close()
    CONNECTING = "CONNECTING"       # transport + handshake in progress
    CONNECTED = "CONNECTED"         # handshake done, usable for I/O
    RECONNECTING = "RECONNECTING"   # supervisor waiting between attempts


class DisconnectReason(str, Enum):
    """Why a receive loop returned."""

    PEER_CLOSED = "PEER_CLOSED"  # close frame from the server
    EOF = "EOF"                  # stream ended or frame truncated
    ERROR = "ERROR"              # I/O error while reading or replying
    STOPPED = "STOPPED"          # we left CONNECTED ourselves


@dataclass
class ProxyConfig:
    host: Optional[str] = None
    port: int = 0

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}" if self.enabled else "direct"


@dataclass
class ClientStatus:
    """Point-in-time snapshot for diagnostics."""
    state: ConnectionState
    uri: str
    proxy: str
    manually_closed: bool
    reconnect_attempts: int
    last_seen: Optional[float]
    reconnecting: bool
