import asyncio
import base64

import pytest

from conftest import RawPeer
from wsclient.core.Endpoint import resolve_endpoint
from wsclient.core.Handshake import (
    build_request,
    compute_accept,
    generate_key,
    parse_headers,
)
from wsclient.core.Transport import parse_status_code
from wsclient.state import ConnectionState
from wsclient.ws_client import WebSocketClient
from wscommon.errors import AcceptMismatch, ConnectFailed, HandshakeRejected


def test_accept_matches_rfc_example():
    assert compute_accept("dGhlIHNhbXBsZSBub25jZQ==") == "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def test_generated_key_is_sixteen_random_bytes():
    key = generate_key()
    assert len(base64.b64decode(key)) == 16
    assert generate_key() != key


def test_request_has_upgrade_headers():
    endpoint = resolve_endpoint("ws://game.example.com:8080/lobby?room=3")
    request = build_request(endpoint, "dGhlIHNhbXBsZSBub25jZQ==").decode("ascii")

    lines = request.split("\r\n")
    assert lines[0] == "GET /lobby?room=3 HTTP/1.1"
    assert "Host: game.example.com:8080" in lines
    assert "Upgrade: websocket" in lines
    assert "Connection: Upgrade" in lines
    assert "Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==" in lines
    assert "Sec-WebSocket-Version: 13" in lines
    assert request.endswith("\r\n\r\n")


def test_parse_headers_is_case_insensitive():
    head = "HTTP/1.1 101 Switching Protocols\r\nSEC-WEBSOCKET-ACCEPT:  abc= \r\nUpgrade: websocket\r\n\r\n"
    headers = parse_headers(head)
    assert headers["sec-websocket-accept"] == "abc="
    assert headers["upgrade"] == "websocket"


@pytest.mark.parametrize(
    "head, status",
    [
        ("HTTP/1.1 101 Switching Protocols\r\n", 101),
        ("HTTP/1.0 200 Connection established\r\n\r\n", 200),
        ("HTTP/1.1 407 Proxy Authentication Required\r\n\r\n", 407),
        ("garbage\r\n\r\n", None),
        ("HTTP/1.1 abc\r\n\r\n", None),
    ],
)
def test_parse_status_code(head, status):
    assert parse_status_code(head) == status


@pytest.mark.asyncio
async def test_rejected_handshake_fails_connect_and_closes_socket():
    async def scenario(conn):
        await conn.drain_until_eof()

    async with RawPeer(scenario, status_line="HTTP/1.1 403 Forbidden") as peer:
        client = WebSocketClient(peer.uri)
        with pytest.raises(HandshakeRejected) as excinfo:
            await client.connect()

        assert excinfo.value.status == 403
        assert "403 Forbidden" in excinfo.value.response
        # the peer sees EOF: the client closed the stream instead of leaking it
        await asyncio.wait_for(peer.connections[0].eof.wait(), 2.0)
        assert client.state is ConnectionState.DISCONNECTED
        assert client.get_status().reconnecting is False


@pytest.mark.asyncio
async def test_wrong_accept_token_is_rejected():
    async def scenario(conn):
        await conn.drain_until_eof()

    async with RawPeer(scenario, bad_accept=True) as peer:
        client = WebSocketClient(peer.uri)
        with pytest.raises(AcceptMismatch) as excinfo:
            await client.connect()

        assert excinfo.value.expected != "AAAAAAAAAAAAAAAAAAAAAAAAAAA="
        await asyncio.wait_for(peer.connections[0].eof.wait(), 2.0)
        assert not client.is_connected()


@pytest.mark.asyncio
async def test_server_hanging_up_mid_handshake():
    async def hang_up(reader, writer):
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 101 Switching")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(hang_up, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        client = WebSocketClient(f"ws://127.0.0.1:{port}/")
        with pytest.raises(HandshakeRejected):
            await client.connect()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_connect_to_closed_port_raises_connect_failed():
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    client = WebSocketClient(f"ws://127.0.0.1:{port}/")
    with pytest.raises(ConnectFailed):
        await client.connect()
    assert client.state is ConnectionState.DISCONNECTED
    assert client.get_status().reconnecting is False
