"""
WebSocket opening handshake (RFC 6455 §4.1 and §4.2.2).
"""

from __future__ import annotations
import asyncio
from typing import Dict

from websockets.utils import accept_key, generate_key

from wscommon.errors import AcceptMismatch, ConnectFailed, HandshakeRejected
from wscommon.log import get_logger
from wscommon.utils import describe_error
from wsclient.core.Endpoint import Endpoint
from wsclient.core.Transport import close_stream, parse_status_code, read_response_head

logger = get_logger(__name__)

WEBSOCKET_VERSION = "13"


def compute_accept(key: str) -> str:
    """Expected Sec-WebSocket-Accept for ``key`` (SHA-1 of key + GUID, base64)."""
    return accept_key(key)


def build_request(endpoint: Endpoint, key: str) -> bytes:
    return (
        f"GET {endpoint.path} HTTP/1.1\r\n"
        f"Host: {endpoint.authority}\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {key}\r\n"
        f"Sec-WebSocket-Version: {WEBSOCKET_VERSION}\r\n"
        "\r\n"
    ).encode("ascii")


def parse_headers(head: str) -> Dict[str, str]:
    """Header block to a dict with lower-cased names. Repeated names keep the last value."""
    headers: Dict[str, str] = {}
    for line in head.split("\r\n")[1:]:
        if not line or ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return headers


async def perform_handshake(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    endpoint: Endpoint,
    timeout: float,
) -> Dict[str, str]:
    """
    Send the upgrade request and validate the server's answer.

    The writer is closed before any error propagates.

    Returns:
        Response headers (lower-cased names)

    Raises:
        HandshakeRejected: Status is not 101 or the stream ended early
        AcceptMismatch: Sec-WebSocket-Accept does not match our key
        ConnectFailed: I/O failure or timeout while exchanging headers
    """
    key = generate_key()
    try:
        writer.write(build_request(endpoint, key))
        await writer.drain()
        head = await read_response_head(reader, timeout)
    except asyncio.IncompleteReadError as e:
        await close_stream(writer)
        raise HandshakeRejected(
            "Handshake failed: connection closed before response completed",
            response=e.partial.decode("latin-1"),
        ) from e
    except asyncio.LimitOverrunError as e:
        await close_stream(writer)
        raise HandshakeRejected("Handshake failed: response header too large") from e
    except (OSError, asyncio.TimeoutError) as e:
        await close_stream(writer)
        raise ConnectFailed(f"Handshake I/O failed: {describe_error(e)}") from e

    response = head.decode("latin-1")
    status = parse_status_code(response)
    if status != 101:
        await close_stream(writer)
        raise HandshakeRejected(f"Handshake failed with status {status}", status=status, response=response)

    headers = parse_headers(response)
    expected = compute_accept(key)
    if headers.get("sec-websocket-accept") != expected:
        await close_stream(writer)
        raise AcceptMismatch(
            f"Invalid Sec-WebSocket-Accept header (expected {expected})",
            expected=expected,
            response=response,
        )

    logger.debug("Handshake accepted by %s", endpoint)
    return headers
