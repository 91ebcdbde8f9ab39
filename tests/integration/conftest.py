"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- Pairing server lifecycle (WebSocket + health endpoints)
- Client message helpers
"""

import asyncio
import json
import logging
import random
import socket
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import pytest_asyncio
from websockets.asyncio.client import ClientConnection

from voicepair.config import HealthConfig, VoicePairConfig, WebSocketConfig
from voicepair.engine import PairingEngine
from voicepair.metrics import reset_metrics_collector
from voicepair.server import start_server

logger = logging.getLogger(__name__)


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


@dataclass
class RunningServer:
    """Handle on a pairing server started for a test."""

    engine: PairingEngine
    ws_url: str
    health_url: str


@pytest_asyncio.fixture
async def pairing_server() -> AsyncIterator[RunningServer]:
    """Start a pairing server on free local ports."""
    reset_metrics_collector()

    ws_port = get_free_port()
    health_port = get_free_port()
    config = VoicePairConfig(
        websocket=WebSocketConfig(host="127.0.0.1", port=ws_port, ping_interval_s=None),
        health=HealthConfig(host="127.0.0.1", port=health_port),
        graceful_shutdown_timeout_s=2,
    )
    engine = PairingEngine(config, rng=random.Random(42))

    ready = asyncio.Event()
    task = asyncio.create_task(start_server(config, engine=engine, ready=ready))
    await asyncio.wait_for(ready.wait(), timeout=5.0)

    yield RunningServer(
        engine=engine,
        ws_url=f"ws://127.0.0.1:{ws_port}",
        health_url=f"http://127.0.0.1:{health_port}",
    )

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def recv_json(websocket: ClientConnection, timeout: float = 5.0) -> dict[str, Any]:
    """Receive and decode one server message."""
    raw = await asyncio.wait_for(websocket.recv(), timeout=timeout)
    data: dict[str, Any] = json.loads(raw)
    return data


async def recv_until(
    websocket: ClientConnection, message_type: str, timeout: float = 5.0
) -> dict[str, Any]:
    """Skip messages until one of the given type arrives."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TimeoutError(f"No '{message_type}' message within {timeout}s")
        message = await recv_json(websocket, timeout=remaining)
        if message["type"] == message_type:
            return message
        logger.debug("Skipping message", extra={"type": message["type"]})


async def send_json(websocket: ClientConnection, message_type: str, **payload: Any) -> None:
    await websocket.send(json.dumps({"type": message_type, "payload": payload}))
