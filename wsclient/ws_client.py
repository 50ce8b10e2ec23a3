from __future__ import annotations
import asyncio
import inspect
import ssl
from contextlib import suppress
from typing import Awaitable, Callable, Optional, Set, Union

from wscommon.config import ClientConfig
from wscommon.errors import ConnectFailed, DecodeError, NotConnected
from wscommon.log import get_logger
from wsclient.core.ConnectionLink import ConnectionLink, peer_address
from wsclient.core.Endpoint import Endpoint, resolve_endpoint
from wsclient.core.FrameCodec import parse_close_payload
from wsclient.core.Handshake import perform_handshake
from wsclient.core.Opcodes import CloseCode, Opcode
from wsclient.core.Transport import Streams, make_ssl_context, open_transport
from wsclient.state import ClientStatus, ConnectionState, DisconnectReason, ProxyConfig

logger = get_logger(__name__)


MessageHandler = Callable[[str], Union[None, Awaitable[None]]]


class WebSocketClient:
    """
    WebSocket client with proxy tunnelling, keepalive pings and automatic
    reconnection.

    connect() blocks until the handshake succeeds or fails. While connected a
    receive task hands every text message to ``message_handler`` (one at a
    time, in arrival order) and a keepalive task pings the server. Unplanned
    disconnects hand off to a reconnection supervisor that retries at a fixed
    delay until it succeeds or close() is called.
    """

    def __init__(
        self,
        uri: str,
        proxy_host: Optional[str] = None,
        proxy_port: int = 0,
        message_handler: Optional[MessageHandler] = None,
        *,
        config: Optional[ClientConfig] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.uri = uri
        self.endpoint: Endpoint = resolve_endpoint(uri)
        self.message_handler = message_handler
        self.config = config or ClientConfig()
        self._proxy = ProxyConfig(proxy_host, proxy_port)
        self._ssl_context = ssl_context

        self.state = ConnectionState.DISCONNECTED
        self.manually_closed = False
        self.reconnect_attempts = 0
        self._link: Optional[ConnectionLink] = None

        # connect()/close() exclude each other; teardown has its own lock so the
        # receive path and a failed send cannot both tear down the same link.
        self._lifecycle_lock = asyncio.Lock()
        self._disconnect_lock = asyncio.Lock()

        self._receive_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()

    # ========================================
    #           PUBLIC API
    # ========================================

    async def connect(self) -> None:
        """
        Connect to the server (proxy first if configured, then direct).

        Cancels any pending reconnection and drops any previous connection.

        Raises:
            ConnectFailed: Transport could not be opened
            HandshakeRejected: Server refused the upgrade
            AcceptMismatch: Server sent the wrong Sec-WebSocket-Accept
        """
        await self._cancel_reconnect()
        async with self._lifecycle_lock:
            self.manually_closed = False
            async with self._disconnect_lock:
                await self._teardown()
            try:
                await self._connect_once()
            except Exception as e:
                logger.error("Connection failed: %s", e, extra={"endpoint": self.endpoint.hostport})
                raise

    async def send(self, message: str) -> None:
        """
        Send a text message.

        Raises:
            NotConnected: If called while disconnected
            ConnectFailed: If the write fails (the connection is torn down)
        """
        link = self._link
        if self.state is not ConnectionState.CONNECTED or link is None:
            raise NotConnected("Not connected")
        try:
            await link.send_text(message)
        except OSError as e:
            await self._handle_disconnection(link, DisconnectReason.ERROR, e)
            raise ConnectFailed(f"Send failed: {e}") from e

    async def close(self) -> None:
        """Close manually: no reconnection happens afterwards. Safe to call twice."""
        self.manually_closed = True
        await self._cancel_reconnect()
        async with self._lifecycle_lock:
            self.manually_closed = True
            link = self._link
            if link is None:
                self.state = ConnectionState.DISCONNECTED
                logger.debug("close() called with no live connection")
                return
            if self.state is ConnectionState.CONNECTED:
                try:
                    await link.send_close(CloseCode.NORMAL_CLOSURE)
                except OSError as e:
                    logger.warning("Error sending close frame: %s", e)
            async with self._disconnect_lock:
                await self._teardown()
            await self._cancel_reconnect()
            self.state = ConnectionState.DISCONNECTED
        logger.info("WebSocket closed manually.")

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def set_proxy_config(self, proxy_host: Optional[str], proxy_port: int) -> None:
        """Change the proxy; takes effect on the next connection attempt."""
        self._proxy = ProxyConfig(proxy_host, proxy_port)

    @property
    def proxy_host(self) -> Optional[str]:
        return self._proxy.host

    @property
    def proxy_port(self) -> int:
        return self._proxy.port

    def get_status(self) -> ClientStatus:
        """Expose internal status for diagnostics."""
        link = self._link
        return ClientStatus(
            state=self.state,
            uri=self.uri,
            proxy=str(self._proxy),
            manually_closed=self.manually_closed,
            reconnect_attempts=self.reconnect_attempts,
            last_seen=link.last_seen if link else None,
            reconnecting=self._reconnect_task is not None and not self._reconnect_task.done(),
        )

    async def __aenter__(self) -> "WebSocketClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    def __repr__(self) -> str:
        return (
            f"WebSocketClient(uri={self.uri!r}, proxy_host={self._proxy.host!r}, "
            f"proxy_port={self._proxy.port}, connected={self.is_connected()}, "
            f"manually_closed={self.manually_closed})"
        )

    # ========================================
    #           CONNECT SEQUENCE
    # ========================================

    async def _open_streams(self) -> Streams:
        timeout = self.config.connect_timeout
        ssl_context = self._ssl_context
        if self.endpoint.secure and ssl_context is None:
            ssl_context = make_ssl_context(self.config.verify_tls)

        proxy = self._proxy
        return await open_transport(self.endpoint, ProxyConfig(proxy.host, proxy.port), timeout, ssl_context)

    async def _connect_once(self) -> None:
        """Transport, handshake, then start the receive and keepalive tasks."""
        self.state = ConnectionState.CONNECTING
        try:
            reader, writer = await self._open_streams()
            try:
                await perform_handshake(reader, writer, self.endpoint, self.config.effective_handshake_timeout)
            except asyncio.CancelledError:
                writer.close()
                raise
        except BaseException:
            self.state = ConnectionState.DISCONNECTED
            raise

        link = ConnectionLink(reader, writer, self.endpoint)
        self._link = link
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self._receive_task = self._spawn(self._run_connection(link))
        self._ping_task = self._spawn(self._keepalive(link))
        logger.info(f"WebSocket connected to {self.uri} (peer {peer_address(link)})")

    # ========================================
    #           BACKGROUND TASKS
    # ========================================

    def _spawn(self, coroutine: Awaitable[None]) -> asyncio.Task:
        """Keep a strong reference to background tasks until completion."""
        task = asyncio.ensure_future(coroutine)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _run_connection(self, link: ConnectionLink) -> None:
        """Receive until the link ends, then decide between teardown and reconnection."""
        reason = await self._receive_loop(link)
        await self._handle_disconnection(link, reason)

    async def _receive_loop(self, link: ConnectionLink) -> DisconnectReason:
        while self._link is link and self.state is ConnectionState.CONNECTED:
            try:
                frame = await link.read_frame()
            except DecodeError as e:
                logger.debug("Receive stream ended: %s", e)
                return DisconnectReason.EOF
            except OSError as e:
                logger.warning("Receive failed: %s", e)
                return DisconnectReason.ERROR

            if frame.opcode == Opcode.TEXT:
                await self._dispatch_text(frame.payload)
            elif frame.opcode == Opcode.CLOSE:
                code, reason = parse_close_payload(frame.payload)
                logger.info(f"Connection closed by server (code={code}, reason={reason!r})")
                try:
                    await link.send_close(code if code not in (None, CloseCode.NO_STATUS_RCVD) else CloseCode.NORMAL_CLOSURE)
                except OSError as e:
                    logger.debug("Could not echo close frame: %s", e)
                return DisconnectReason.PEER_CLOSED
            elif frame.opcode == Opcode.PING:
                try:
                    await link.send_pong(frame.payload)
                except OSError as e:
                    logger.warning("Error sending pong: %s", e)
                    return DisconnectReason.ERROR
            else:
                logger.debug("Ignoring frame", extra={"opcode": frame.opcode})
        return DisconnectReason.STOPPED

    async def _dispatch_text(self, payload: bytes) -> None:
        try:
            message = payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Text frame is not valid UTF-8; replacing invalid bytes")
            message = payload.decode("utf-8", errors="replace")

        if self.message_handler is None:
            return
        try:
            result = self.message_handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Message handler raised: {e}", exc_info=True)

    async def _keepalive(self, link: ConnectionLink) -> None:
        """Ping immediately, then every ping_interval, while this link is live."""
        while self._link is link and self.state is ConnectionState.CONNECTED:
            try:
                await link.send_ping(self.config.ping_payload_size)
            except OSError as e:
                # the receive path notices a dead stream on its own
                logger.warning("Error sending ping: %s", e)
            await asyncio.sleep(self.config.ping_interval)

    async def _reconnect_loop(self, immediate: bool) -> None:
        """Retry the connect sequence at a fixed delay until connected or closed."""
        delay = self.config.reconnect_delay
        first = True
        try:
            while not self.manually_closed and self.state is not ConnectionState.CONNECTED:
                self.state = ConnectionState.RECONNECTING
                if not (immediate and first):
                    logger.info(f"Attempting to reconnect in {delay:g} seconds...")
                    await asyncio.sleep(delay)
                first = False
                if self.manually_closed:
                    break

                self.reconnect_attempts += 1
                attempt = self.reconnect_attempts
                try:
                    async with self._lifecycle_lock:
                        if self.manually_closed or self.state is ConnectionState.CONNECTED:
                            break
                        await self._connect_once()
                except Exception as e:
                    logger.warning(f"Reconnect failed: {e}", extra={"attempt": attempt})
        finally:
            if not self.manually_closed and self.state is ConnectionState.RECONNECTING:
                self.state = ConnectionState.DISCONNECTED

    # ========================================
    #           TEARDOWN
    # ========================================

    async def _handle_disconnection(
        self,
        link: ConnectionLink,
        reason: DisconnectReason,
        error: Optional[BaseException] = None,
    ) -> None:
        """Single exit path for a lost link: tear down once, then maybe reconnect."""
        async with self._disconnect_lock:
            if self._link is not link:
                # already torn down (close(), connect(), or another failure)
                return
            if error is not None:
                logger.warning(f"Connection error: {error}")
            await self._teardown()
            if self.manually_closed:
                return
            self._start_reconnect(immediate=reason is DisconnectReason.PEER_CLOSED)

    def _start_reconnect(self, immediate: bool) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self.state = ConnectionState.RECONNECTING
        self._reconnect_task = self._spawn(self._reconnect_loop(immediate))

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is None or task is asyncio.current_task():
            return
        self._reconnect_task = None
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _teardown(self) -> None:
        """Drop the live link and stop its tasks. Never cancels the calling task."""
        link = self._link
        self._link = None
        if self.state is ConnectionState.CONNECTED:
            self.state = ConnectionState.DISCONNECTED

        current = asyncio.current_task()
        tasks = [t for t in (self._receive_task, self._ping_task) if t is not None and t is not current]
        self._receive_task = None
        self._ping_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Background task failed during teardown: {e}")

        if link is not None:
            await link.close()
