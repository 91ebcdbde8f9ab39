"""Pairing server with WebSocket transport.

Main server implementation that:
1. Starts WebSocket transport
2. Provides HTTP health check and metrics endpoints
3. Accepts client connections and resolves their region
4. Feeds inbound frames to the pairing engine
5. Tears down sessions when connections close
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from voicepair.config import VoicePairConfig
from voicepair.engine import PairingEngine
from voicepair.geo import RegionResolver
from voicepair.health import setup_health_routes
from voicepair.transport.websocket_transport import WebSocketConnection, WebSocketTransport

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs") / "voicepair.yaml"


async def handle_connection(
    connection: WebSocketConnection,
    engine: PairingEngine,
    resolver: RegionResolver,
) -> None:
    """Run one client connection from registration to teardown.

    Args:
        connection: Accepted client connection
        engine: Pairing engine
        resolver: Region resolver
    """
    session_id: str | None = None
    try:
        region = await resolver.resolve(connection.remote_address, connection.forwarded_for)
        session_id = engine.connect(connection, region)

        async for raw_message in connection.receive():
            try:
                engine.handle_message(session_id, raw_message)
            except Exception:
                logger.exception("Error handling frame", extra={"session_id": session_id})
                engine.send_error(session_id)
    except ConnectionError as e:
        logger.warning(
            "Connection error, tearing down session",
            extra={"session_id": session_id, "error": str(e)},
        )
    except asyncio.CancelledError:
        logger.info("Session task cancelled", extra={"session_id": session_id})
        raise
    finally:
        if session_id is not None:
            engine.disconnect(session_id)
        await connection.close()


async def start_server(
    config: VoicePairConfig,
    engine: PairingEngine | None = None,
    ready: asyncio.Event | None = None,
) -> None:
    """Run the pairing server until cancelled.

    Args:
        config: Server configuration
        engine: Pairing engine (created from config when None)
        ready: Event set once the server accepts connections
    """
    if engine is None:
        engine = PairingEngine(config)

    resolver = RegionResolver(config.geo)
    await resolver.start()

    ws_config = config.websocket
    transport = WebSocketTransport(
        host=ws_config.host,
        port=ws_config.port,
        max_connections=ws_config.max_connections,
        max_message_size=ws_config.max_message_size,
        send_queue_size=ws_config.send_queue_size,
        ping_interval_s=ws_config.ping_interval_s,
    )
    await transport.start()
    logger.info("WebSocket transport started", extra={"port": transport.port})

    runner: AppRunner | None = None
    if config.health.enabled:
        health_app = Application()
        setup_health_routes(health_app, engine, transport)

        runner = AppRunner(health_app)
        await runner.setup()
        site = TCPSite(runner, config.health.host, config.health_port)
        await site.start()
        logger.info("Health check server started", extra={"port": config.health_port})

    session_tasks: set[asyncio.Task[None]] = set()
    try:
        logger.info("Pairing server ready", extra={"geo_enabled": config.geo.enabled})
        if ready is not None:
            ready.set()

        while True:
            connection = await transport.accept_connection()
            task = asyncio.create_task(handle_connection(connection, engine, resolver))
            session_tasks.add(task)
            task.add_done_callback(session_tasks.discard)

    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    except Exception as e:
        logger.exception("Server error", extra={"error": str(e)})
    finally:
        logger.info("Shutting down pairing server")

        await transport.stop()
        logger.info("WebSocket transport stopped")

        if session_tasks:
            logger.info("Waiting for sessions to complete", extra={"count": len(session_tasks)})
            _, pending = await asyncio.wait(
                session_tasks, timeout=config.graceful_shutdown_timeout_s
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if runner is not None:
            await runner.cleanup()
            logger.info("Health check server stopped")

        await resolver.close()

        logger.info("Pairing server stopped")


async def run_from_config_file(config_path: Path) -> None:
    """Load configuration, set up logging and run the server.

    Args:
        config_path: Path to YAML configuration file
    """
    config = VoicePairConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    await start_server(config)


def main() -> None:
    """Entry point for the pairing server."""
    parser = argparse.ArgumentParser(description="Anonymous voice/text pairing server")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to server config YAML file (defaults are used if missing)",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run_from_config_file(args.config))
    except KeyboardInterrupt:
        logger.info("Pairing server interrupted")


if __name__ == "__main__":
    main()
