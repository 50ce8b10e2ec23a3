from __future__ import annotations

import asyncio
import time
from typing import Optional

from wscommon.log import get_logger
from wscommon.utils import random_bytes
from wsclient.core.Endpoint import Endpoint
from wsclient.core.FrameCodec import Frame, encode_close_payload, encode_frame, read_frame
from wsclient.core.Opcodes import CloseCode, Opcode
from wsclient.core.Transport import close_stream

logger = get_logger(__name__)


class ConnectionLink:
    """Wrapper around one live stream pair with frame-level I/O"""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, endpoint: Endpoint):
        self.reader = reader
        self.writer = writer
        self.endpoint = endpoint
        self.last_seen: float = time.monotonic()
        self.close_sent = False
        self.closed = False

    async def send_frame(self, opcode: Opcode, payload: bytes = b"") -> None:
        """Encode and write one masked frame. Raises OSError if the stream is gone."""
        if self.closed or self.writer.is_closing():
            raise ConnectionResetError("transport is closed")
        # one write per frame so concurrent senders never interleave inside a frame
        self.writer.write(encode_frame(opcode, payload))
        await self.writer.drain()
        logger.debug(f"Sent {opcode.name} frame ({len(payload)} bytes) to {self.endpoint.hostport}")

    async def send_text(self, message: str) -> None:
        await self.send_frame(Opcode.TEXT, message.encode("utf-8"))

    async def send_ping(self, size: int = 10) -> bytes:
        payload = random_bytes(size)
        await self.send_frame(Opcode.PING, payload)
        return payload

    async def send_pong(self, payload: bytes) -> None:
        await self.send_frame(Opcode.PONG, payload)

    async def send_close(self, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "") -> None:
        """Send a close frame once; later calls are no-ops."""
        if self.close_sent:
            return
        self.close_sent = True
        await self.send_frame(Opcode.CLOSE, encode_close_payload(code, reason))

    async def read_frame(self) -> Frame:
        frame = await read_frame(self.reader)
        self.last_seen = time.monotonic()
        return frame

    async def close(self) -> None:
        """Close the underlying stream"""
        if self.closed:
            return
        self.closed = True
        try:
            await close_stream(self.writer)
        except Exception as e:
            logger.error(f"Error closing connection: {e}")

    def __repr__(self) -> str:
        return f"ConnectionLink({self.endpoint.hostport}, closed={self.closed})"


def peer_address(link: Optional[ConnectionLink]) -> Optional[str]:
    if link is None:
        return None
    peer = link.writer.get_extra_info("peername")
    if not peer:
        return None
    return f"{peer[0]}:{peer[1]}"
