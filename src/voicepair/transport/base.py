"""Base transport abstraction for client connections.

Defines the interface that transport implementations must provide so the
pairing engine can deliver messages without knowing how bytes reach clients.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from voicepair.transport.protocol import ServerMessage


class Connection(ABC):
    """Send-capable handle for one connected client.

    The engine calls :meth:`send` while holding its state lock, so
    implementations must never block: outbound messages are buffered per
    connection and written by the transport in the background.
    """

    @abstractmethod
    def send(self, message: ServerMessage) -> bool:
        """Queue a message for delivery to the client.

        Args:
            message: Server message to deliver

        Returns:
            True if the message was accepted for delivery, False if the
            connection is closed or its outbound buffer is full
        """
        pass

    @abstractmethod
    async def receive(self) -> AsyncIterator[str | bytes]:
        """Receive raw frames from the client until the connection closes.

        Yields:
            Raw frame as received (text or binary)

        Raises:
            ConnectionError: If the connection fails with a transport error
        """
        # Using yield to make this an async generator
        if False:
            yield ""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release its resources."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check if the connection can still deliver messages."""
        pass

    @property
    @abstractmethod
    def remote_address(self) -> str | None:
        """Peer network address, if known."""
        pass

    @property
    def forwarded_for(self) -> str | None:
        """Raw ``X-Forwarded-For`` header value, if the transport has one."""
        return None


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server and hands out a
    :class:`Connection` for every incoming client.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server and close all active connections."""
        pass

    @abstractmethod
    async def accept_connection(self) -> Connection:
        """Accept a new client connection.

        Blocks until a client connects.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
