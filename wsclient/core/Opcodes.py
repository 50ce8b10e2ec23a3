from __future__ import annotations

from enum import IntEnum


class Opcode(IntEnum):
    """WebSocket frame opcodes per RFC 6455 §5.2."""

    CONTINUATION = 0x0   # not supported, ignored on receive
    TEXT = 0x1
    BINARY = 0x2         # not supported, ignored on receive
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


class CloseCode(IntEnum):
    """Close status codes we send or log (RFC 6455 §7.4.1)."""

    NORMAL_CLOSURE = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    UNSUPPORTED_DATA = 1003
    NO_STATUS_RCVD = 1005   # never sent on the wire
    ABNORMAL_CLOSURE = 1006  # never sent on the wire
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    INTERNAL_ERROR = 1011
