from __future__ import annotations
from dataclasses import dataclass

from websockets.exceptions import InvalidURI
from websockets.uri import parse_uri

from wscommon.errors import InvalidEndpoint

DEFAULT_PORTS = {"ws": 80, "wss": 443}


@dataclass(frozen=True)
class Endpoint:
    """Where to connect: parsed once from a ws:// or wss:// URI."""
    scheme: str   # "ws" or "wss"
    host: str
    port: int
    path: str     # request target, always starts with "/"

    @property
    def secure(self) -> bool:
        return self.scheme == "wss"

    @property
    def authority(self) -> str:
        """Value for the Host header; the port is left out when it is the default."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port == DEFAULT_PORTS[self.scheme]:
            return host
        return f"{host}:{self.port}"

    @property
    def hostport(self) -> str:
        """host:port as used by the CONNECT request line."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}{self.path}"


def resolve_endpoint(uri: str) -> Endpoint:
    """
    Parse ``uri`` into an Endpoint. No network activity.

    Raises:
        InvalidEndpoint: If the scheme is not ws/wss or the URI is malformed
    """
    try:
        parsed = parse_uri(uri)
    except InvalidURI as e:
        raise InvalidEndpoint(f"Invalid URI {uri!r}: {e}") from e
    except ValueError as e:
        # bad port numbers and hostnames that fail IDNA encoding
        raise InvalidEndpoint(f"Invalid URI {uri!r}: {e}") from e

    return Endpoint(
        scheme="wss" if parsed.secure else "ws",
        host=parsed.host,
        port=parsed.port,
        path=parsed.resource_name or "/",
    )
