"""
WebSocket frame encoding and decoding (RFC 6455 §5).

Only unfragmented frames are produced: FIN is always set. Every frame this
client sends is masked with a fresh 4-byte key. Incoming frames are accepted
masked or unmasked.
"""

from __future__ import annotations
import asyncio
import struct
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from wscommon.errors import DecodeError
from wscommon.utils import random_bytes

FIN_BIT = 0x80
MASK_BIT = 0x80
OPCODE_MASK = 0x0F
LENGTH_MASK = 0x7F

LEN_16 = 126
LEN_64 = 127
MAX_LEN_7 = 125
MAX_LEN_16 = 0xFFFF
MAX_LEN_64 = 0x7FFFFFFFFFFFFFFF  # most significant bit must be 0


class ByteReader(Protocol):
    async def readexactly(self, n: int) -> bytes: ...


@dataclass
class Frame:
    fin: bool
    opcode: int
    payload: bytes
    masked: bool = False
    mask_key: Optional[bytes] = None


def apply_mask(data: bytes, mask_key: bytes) -> bytes:
    """XOR ``data`` with ``mask_key`` cycling over its 4 bytes. Self-inverse."""
    if len(mask_key) != 4:
        raise ValueError("mask key must be exactly 4 bytes")
    n = len(data)
    if n == 0:
        return b""
    keystream = (mask_key * (n // 4 + 1))[:n]
    return (int.from_bytes(data, "big") ^ int.from_bytes(keystream, "big")).to_bytes(n, "big")


def encode_frame(opcode: int, payload: bytes, mask_key: Optional[bytes] = None) -> bytes:
    """
    Serialize one masked, final frame.

    Args:
        opcode: Frame opcode (see wsclient.core.Opcodes.Opcode)
        payload: Unmasked payload bytes
        mask_key: 4-byte key; a random one is generated when omitted

    Returns:
        Header, mask key and masked payload as a single bytes object
    """
    length = len(payload)
    if length > MAX_LEN_64:
        raise ValueError("payload too large for a single frame")
    if mask_key is None:
        mask_key = random_bytes(4)

    first = FIN_BIT | (int(opcode) & OPCODE_MASK)
    if length <= MAX_LEN_7:
        header = struct.pack("!BB", first, MASK_BIT | length)
    elif length <= MAX_LEN_16:
        header = struct.pack("!BBH", first, MASK_BIT | LEN_16, length)
    else:
        header = struct.pack("!BBQ", first, MASK_BIT | LEN_64, length)

    return header + mask_key + apply_mask(payload, mask_key)


async def _read(reader: ByteReader, n: int, what: str) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise DecodeError(f"stream ended while reading {what} ({len(e.partial)}/{n} bytes)") from e


async def read_frame(reader: ByteReader) -> Frame:
    """
    Read and decode exactly one frame from ``reader``.

    Raises:
        DecodeError: If the stream ends mid-frame or the length is invalid
    """
    b0, b1 = await _read(reader, 2, "frame header")

    fin = bool(b0 & FIN_BIT)
    opcode = b0 & OPCODE_MASK
    masked = bool(b1 & MASK_BIT)
    length = b1 & LENGTH_MASK

    if length == LEN_16:
        (length,) = struct.unpack("!H", await _read(reader, 2, "16-bit length"))
    elif length == LEN_64:
        # Full 64-bit width; lengths are not truncated to 32 bits.
        (length,) = struct.unpack("!Q", await _read(reader, 8, "64-bit length"))
        if length > MAX_LEN_64:
            raise DecodeError(f"invalid 64-bit payload length {length:#x}")

    mask_key = await _read(reader, 4, "mask key") if masked else None
    payload = await _read(reader, length, "payload") if length else b""

    if mask_key is not None:
        payload = apply_mask(payload, mask_key)

    return Frame(fin=fin, opcode=opcode, payload=payload, masked=masked, mask_key=mask_key)


def encode_close_payload(code: int, reason: str = "") -> bytes:
    """Close frame body: 2-byte big-endian status followed by UTF-8 reason."""
    body = struct.pack("!H", code) + reason.encode("utf-8")
    if len(body) > MAX_LEN_7:
        raise ValueError("close reason too long")
    return body


def parse_close_payload(payload: bytes) -> Tuple[Optional[int], str]:
    """Return (status code, reason). An empty body has no status code."""
    if len(payload) < 2:
        return None, ""
    (code,) = struct.unpack("!H", payload[:2])
    return code, payload[2:].decode("utf-8", errors="replace")
