import asyncio
import logging
import struct
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Collection, List

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from websockets.utils import accept_key

from wsclient.core.FrameCodec import Frame, read_frame
from wscommon.errors import DecodeError


def server_frame(opcode: int, payload: bytes = b"") -> bytes:
    """Unmasked frame as a server would send it."""
    length = len(payload)
    if length <= 125:
        header = struct.pack("!BB", 0x80 | opcode, length)
    elif length <= 0xFFFF:
        header = struct.pack("!BBH", 0x80 | opcode, 126, length)
    else:
        header = struct.pack("!BBQ", 0x80 | opcode, 127, length)
    return header + payload


def parse_request_headers(head: bytes) -> dict:
    headers = {}
    for line in head.decode("latin-1").split("\r\n")[1:]:
        if ":" in line:
            name, value = line.split(":", 1)
            headers[name.strip().lower()] = value.strip()
    return headers


class PeerConnection:
    def __init__(self, index: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, request: bytes):
        self.index = index
        self.reader = reader
        self.writer = writer
        self.request = request
        self.frames: List[Frame] = []
        self.eof = asyncio.Event()

    async def send(self, opcode: int, payload: bytes = b"") -> None:
        self.writer.write(server_frame(opcode, payload))
        await self.writer.drain()

    async def next_frame(self, skip_pings: bool = True, timeout: float = 2.0) -> Frame:
        while True:
            frame = await asyncio.wait_for(read_frame(self.reader), timeout)
            self.frames.append(frame)
            if skip_pings and frame.opcode == 0x9:
                continue
            return frame

    async def drain_until_eof(self) -> None:
        try:
            while True:
                self.frames.append(await read_frame(self.reader))
        except (DecodeError, ConnectionError):
            pass
        finally:
            self.eof.set()


Scenario = Callable[[PeerConnection], Awaitable[None]]


class RawPeer:
    """
    Minimal WebSocket server speaking raw frames, so tests can see every
    frame the client sends (pings, pongs, close) and script what it receives.
    """

    def __init__(
        self,
        scenario: Scenario,
        *,
        status_line: str = "HTTP/1.1 101 Switching Protocols",
        bad_accept: bool = False,
        reject: Collection[int] = (),
    ):
        self.scenario = scenario
        self.status_line = status_line
        self.reject = set(reject)
        self.bad_accept = bad_accept
        self.connections: List[PeerConnection] = []
        self._server = None
        self._tasks = set()

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    @property
    def uri(self) -> str:
        return f"ws://127.0.0.1:{self.port}/game"

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._tasks.add(asyncio.current_task())
        request = await reader.readuntil(b"\r\n\r\n")
        key = parse_request_headers(request).get("sec-websocket-key", "")
        index = len(self.connections) + 1
        status_line = "HTTP/1.1 403 Forbidden" if index in self.reject else self.status_line
        accept = "AAAAAAAAAAAAAAAAAAAAAAAAAAA=" if self.bad_accept else accept_key(key)
        response = (
            f"{status_line}\r\n"
            "Upgrade: websocket\r\n"
            "Connection: Upgrade\r\n"
            f"Sec-WebSocket-Accept: {accept}\r\n"
            "\r\n"
        )
        writer.write(response.encode("latin-1"))
        await writer.drain()
        conn = PeerConnection(index, reader, writer, request)
        self.connections.append(conn)
        try:
            await self.scenario(conn)
        finally:
            writer.close()

    async def __aenter__(self) -> "RawPeer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc) -> None:
        self._server.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._server.wait_closed()


async def wait_for(predicate, timeout: float = 3.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return False


class _ListHandler(logging.Handler):
    def __init__(self, records: List[logging.LogRecord]):
        super().__init__(logging.DEBUG)
        self.records = records

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@contextmanager
def captured_logs(name: str):
    """Collect records from a project logger (they do not propagate to caplog)."""
    records: List[logging.LogRecord] = []
    handler = _ListHandler(records)
    logger = logging.getLogger(name)
    logger.addHandler(handler)
    try:
        yield records
    finally:
        logger.removeHandler(handler)
