"""
Byte-stream establishment: direct TCP, or an HTTP CONNECT tunnel through a
proxy, optionally upgraded to TLS for wss:// endpoints.

open_transport falls back from the proxy to a direct connection when the
tunnel cannot be established; handshake failures are not its concern.
"""

from __future__ import annotations
import asyncio
import ssl
from contextlib import suppress
from typing import Optional, Tuple

from wscommon.errors import ConnectFailed, ProxyTunnelFailed
from wscommon.log import get_logger
from wscommon.utils import describe_error
from wsclient.core.Endpoint import Endpoint
from wsclient.state import ProxyConfig

logger = get_logger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"

Streams = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


def make_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Default client TLS context; ``verify=False`` is meant for local testing only."""
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def close_stream(writer: asyncio.StreamWriter, timeout: float = 1.0) -> None:
    """Close ``writer`` and wait briefly for the transport to go away."""
    writer.close()
    with suppress(OSError, asyncio.TimeoutError):
        await asyncio.wait_for(writer.wait_closed(), timeout)


async def read_response_head(reader: asyncio.StreamReader, timeout: float) -> bytes:
    """Read an HTTP response up to and including the blank line."""
    return await asyncio.wait_for(reader.readuntil(HEADER_TERMINATOR), timeout)


def parse_status_code(head: str) -> Optional[int]:
    """Status code from 'HTTP/1.1 200 OK...', or None if the line is unreadable."""
    status_line = head.split("\r\n", 1)[0]
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


async def _open(host: str, port: int, timeout: float, **kwargs) -> Streams:
    try:
        return await asyncio.wait_for(asyncio.open_connection(host, port, **kwargs), timeout)
    except (OSError, asyncio.TimeoutError) as e:
        raise ConnectFailed(f"Could not connect to {host}:{port}: {describe_error(e)}") from e


async def open_direct(
    endpoint: Endpoint,
    timeout: float,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> Streams:
    """Connect straight to the endpoint, with TLS when the scheme is wss."""
    logger.debug("Opening direct connection to %s", endpoint.hostport)
    if endpoint.secure:
        return await _open(
            endpoint.host,
            endpoint.port,
            timeout,
            ssl=ssl_context or make_ssl_context(),
            server_hostname=endpoint.host,
        )
    return await _open(endpoint.host, endpoint.port, timeout)


async def open_tunnel(
    endpoint: Endpoint,
    proxy: ProxyConfig,
    timeout: float,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> Streams:
    """
    Open a CONNECT tunnel through ``proxy`` to the endpoint.

    Raises:
        ConnectFailed: If the proxy is unreachable or the TLS upgrade fails
        ProxyTunnelFailed: If the proxy answers with anything but 200
    """
    logger.debug("Opening tunnel to %s via proxy %s:%d", endpoint.hostport, proxy.host, proxy.port)
    reader, writer = await _open(proxy.host, proxy.port, timeout)

    request = (
        f"CONNECT {endpoint.hostport} HTTP/1.1\r\n"
        f"Host: {endpoint.hostport}\r\n"
        "\r\n"
    )
    try:
        writer.write(request.encode("ascii"))
        await writer.drain()
        head = await read_response_head(reader, timeout)
    except asyncio.IncompleteReadError as e:
        await close_stream(writer)
        partial = e.partial.decode("latin-1")
        raise ProxyTunnelFailed("Proxy closed the connection during CONNECT", response=partial) from e
    except asyncio.LimitOverrunError as e:
        await close_stream(writer)
        raise ProxyTunnelFailed("Proxy response header too large") from e
    except (OSError, asyncio.TimeoutError) as e:
        await close_stream(writer)
        raise ConnectFailed(f"Proxy I/O failed during CONNECT: {describe_error(e)}") from e

    response = head.decode("latin-1")
    status = parse_status_code(response)
    if status != 200:
        await close_stream(writer)
        raise ProxyTunnelFailed(
            f"Proxy connection failed with HTTP status code: {status}",
            status=status,
            response=response,
        )

    if endpoint.secure:
        try:
            await asyncio.wait_for(
                writer.start_tls(ssl_context or make_ssl_context(), server_hostname=endpoint.host),
                timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            await close_stream(writer)
            raise ConnectFailed(f"TLS handshake through proxy failed: {describe_error(e)}") from e

    logger.debug("Tunnel established through %s:%d", proxy.host, proxy.port)
    return reader, writer


async def open_transport(
    endpoint: Endpoint,
    proxy: Optional[ProxyConfig],
    timeout: float,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> Streams:
    """
    Tunnel through ``proxy`` when one is configured, otherwise connect directly.

    If the proxy path fails at the transport stage the direct path is tried
    once; its error is the one that surfaces.

    Raises:
        ConnectFailed: If the direct path fails
    """
    if proxy is not None and proxy.enabled:
        try:
            return await open_tunnel(endpoint, proxy, timeout, ssl_context)
        except ConnectFailed as e:
            logger.warning(
                "Proxy connection failed, attempting direct connection: %s", e,
                extra={"endpoint": endpoint.hostport},
            )
    return await open_direct(endpoint, timeout, ssl_context)
