"""WebSocket transport implementation.

Provides WebSocket-based client connections for the pairing server. Each
connection owns a bounded outbound queue drained by a dedicated writer task,
so a slow receiver never stalls the engine or other sessions.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from voicepair.transport.base import Connection, Transport
from voicepair.transport.protocol import ServerMessage, encode_server_message

logger = logging.getLogger(__name__)

# Close code for "try again later" when the server is full
CLOSE_CODE_TRY_AGAIN_LATER = 1013


class WebSocketConnection(Connection):
    """WebSocket-based connection handle.

    :meth:`send` only enqueues; the writer task started by :meth:`start`
    performs the actual network writes in order.
    """

    def __init__(self, websocket: ServerConnection, queue_size: int = 256) -> None:
        """Initialize WebSocket connection.

        Args:
            websocket: WebSocket connection
            queue_size: Outbound message buffer size
        """
        self._websocket = websocket
        self._closed = False
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._writer_task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None

    @property
    def is_open(self) -> bool:
        """Check if the connection is still active."""
        return not self._closed and self._websocket.state == State.OPEN

    @property
    def remote_address(self) -> str | None:
        remote = self._websocket.remote_address
        if isinstance(remote, tuple) and remote:
            return str(remote[0])
        if isinstance(remote, str):
            return remote
        return None

    @property
    def forwarded_for(self) -> str | None:
        request = getattr(self._websocket, "request", None)
        if request is None:
            return None
        value = request.headers.get("X-Forwarded-For")
        return value if isinstance(value, str) else None

    @property
    def pending(self) -> int:
        """Number of messages waiting to be written."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the writer task on the running event loop."""
        if self._writer_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._writer_task = asyncio.create_task(self._write_loop())

    def send(self, message: ServerMessage) -> bool:
        """Queue a message for delivery.

        Safe to call from any thread; calls from outside the event loop
        thread are handed over with ``call_soon_threadsafe``.

        Args:
            message: Server message to deliver

        Returns:
            True if queued, False if closed or the buffer is full
        """
        if not self.is_open:
            return False

        payload = encode_server_message(message)

        if self._loop is not None and threading.get_ident() != self._loop_thread:
            self._loop.call_soon_threadsafe(self._enqueue, payload)
            return True

        return self._enqueue(payload)

    def _enqueue(self, payload: str) -> bool:
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full, dropping message",
                extra={"remote": self.remote_address, "queue_size": self._queue.maxsize},
            )
            return False
        return True

    async def _write_loop(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self._websocket.send(payload)
            except websockets.exceptions.ConnectionClosed:
                self._closed = True
                logger.debug("Write on closed WebSocket", extra={"remote": self.remote_address})
                return
            except Exception as e:
                self._closed = True
                logger.error(
                    "Failed to send message",
                    extra={"remote": self.remote_address, "error": str(e)},
                )
                return
            finally:
                self._queue.task_done()

    async def receive(self) -> AsyncIterator[str | bytes]:
        """Receive raw frames until the client disconnects.

        Yields:
            Raw frame (text or binary)

        Raises:
            ConnectionError: If the connection fails with a transport error
        """
        try:
            async for raw_message in self._websocket:
                yield raw_message
        except websockets.exceptions.ConnectionClosed:
            logger.debug(
                "WebSocket connection closed by client", extra={"remote": self.remote_address}
            )
        except Exception as e:
            logger.error(
                "Error in receive",
                extra={"remote": self.remote_address, "error": str(e)},
            )
            raise ConnectionError(f"WebSocket receive error: {e}") from e
        finally:
            self._closed = True

    async def flush(self, timeout_s: float = 1.0) -> None:
        """Wait until queued messages are written, or the timeout expires."""
        if self._writer_task is None or self._writer_task.done():
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.debug("Flush timed out", extra={"pending": self.pending})

    async def close(self) -> None:
        """Close the connection and stop the writer task."""
        self._closed = True

        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"remote": self.remote_address, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages WebSocket server lifecycle and hands out WebSocketConnection
    instances for incoming clients through :meth:`accept_connection`.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 1000,
        max_message_size: int = 2**20,
        send_queue_size: int = 256,
        ping_interval_s: float | None = 20.0,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port (0 picks a free port)
            max_connections: Maximum concurrent connections
            max_message_size: Maximum inbound frame size in bytes
            send_queue_size: Outbound buffer size per connection
            ping_interval_s: Keepalive ping interval (None disables)
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_size = max_message_size
        self._send_queue_size = send_queue_size
        self._ping_interval_s = ping_interval_s
        self._server: Any = None  # websockets.Server type
        self._running = False
        self._connection_queue: asyncio.Queue[WebSocketConnection] = asyncio.Queue()
        self._active: set[WebSocketConnection] = set()

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_connections(self) -> int:
        return len(self._active)

    @property
    def port(self) -> int:
        """Bound port (resolved after start when configured as 0)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_size,
                ping_interval=self._ping_interval_s,
            )
            self._running = True

            logger.info("WebSocket server started", extra={"host": self._host, "port": self.port})

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server and close all active connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        for connection in list(self._active):
            await connection.close()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_connection(self) -> WebSocketConnection:
        """Accept a new client connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._connection_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle incoming WebSocket connection.

        Args:
            websocket: WebSocket connection
        """
        if len(self._active) >= self._max_connections:
            logger.warning(
                "Connection limit reached, rejecting client",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(CLOSE_CODE_TRY_AGAIN_LATER, "server full")
            return

        connection = WebSocketConnection(websocket, queue_size=self._send_queue_size)
        connection.start()
        self._active.add(connection)

        logger.info("New WebSocket connection", extra={"remote": websocket.remote_address})

        # Queue connection for the server loop to accept
        await self._connection_queue.put(connection)

        # Keep the handler alive until the connection closes
        try:
            await websocket.wait_closed()
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"remote": websocket.remote_address, "error": str(e)},
            )
        finally:
            self._active.discard(connection)
            logger.info("WebSocket connection closed", extra={"remote": websocket.remote_address})
