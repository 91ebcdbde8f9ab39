"""Transport layer for client connections.

Provides the connection handle abstraction the engine delivers through, the
JSON wire protocol, and the WebSocket server implementation.
"""

from voicepair.transport.base import Connection, Transport
from voicepair.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "Connection",
    "Transport",
    "WebSocketConnection",
    "WebSocketTransport",
]
