"""HTTP endpoints for probes, metrics and live pairing statistics.

Served by a small aiohttp application next to the WebSocket server:

- ``/health``, ``/readiness``: transport running and pairing index consistent
- ``/liveness``: process is up, regardless of dependencies
- ``/stats``: point-in-time session and pairing counts
- ``/metrics``: Prometheus text exposition
- ``/metrics/summary``: JSON digest of the key metrics
"""

import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

from voicepair.metrics import get_metrics_collector

if TYPE_CHECKING:
    from voicepair.engine import PairingEngine
    from voicepair.transport.base import Transport

logger = logging.getLogger(__name__)

PROMETHEUS_FORMAT_VERSION = "0.0.4"


class HealthCheckHandler:
    """Request handlers bound to one engine and transport.

    Both dependencies are optional so the endpoints can be mounted in tests
    or tools that only need metrics.
    """

    def __init__(
        self,
        engine: "PairingEngine | None" = None,
        transport: "Transport | None" = None,
    ) -> None:
        self.engine = engine
        self.transport = transport
        self.start_time = time.time()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def _check_transport(self) -> dict[str, Any]:
        if self.transport is not None and not self.transport.is_running:
            return {"ok": False, "error": "transport not running"}
        return {"ok": True, "error": None}

    def _check_engine(self) -> dict[str, Any]:
        if self.engine is None:
            return {"ok": True, "error": None}
        try:
            consistent = self.engine.stats()["consistent"]
        except Exception as e:
            logger.warning("Engine health check failed", extra={"error": str(e)})
            return {"ok": False, "error": str(e)}
        if not consistent:
            return {"ok": False, "error": "pairing index inconsistent"}
        return {"ok": True, "error": None}

    async def health_check(self, request: web.Request) -> web.Response:
        """Report overall health.

        Returns:
            200 with ``status: healthy`` when every check passes, otherwise
            503 with ``status: unhealthy``. ``checks`` holds one
            ``{"ok": bool, "error": str | None}`` entry per dependency.
        """
        checks = {
            "transport": self._check_transport(),
            "engine": self._check_engine(),
        }
        healthy = all(check["ok"] for check in checks.values())

        body = {
            "status": "healthy" if healthy else "unhealthy",
            "uptime_seconds": self.uptime_seconds,
            "checks": checks,
        }
        if not healthy:
            logger.warning("Health check failed", extra={"checks": checks})

        return web.json_response(body, status=200 if healthy else 503)

    async def readiness_check(self, request: web.Request) -> web.Response:
        return await self.health_check(request)

    async def liveness_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "alive", "uptime_seconds": self.uptime_seconds})

    async def stats(self, request: web.Request) -> web.Response:
        """Live session and pairing counts (503 without an engine)."""
        if self.engine is None:
            return web.json_response({"status": "unavailable"}, status=503)
        return web.json_response({"status": "ok", **self.engine.stats()})

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus scrape target."""
        try:
            exposition = get_metrics_collector().export_prometheus()
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

        return web.Response(
            text=exposition,
            content_type="text/plain",
            headers={"X-Prometheus-Format": PROMETHEUS_FORMAT_VERSION},
        )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        try:
            summary = get_metrics_collector().get_summary()
        except Exception as e:
            logger.error("Failed to build metrics summary", extra={"error": str(e)}, exc_info=True)
            return web.json_response({"status": "error", "error": str(e)}, status=500)

        return web.json_response(
            {"status": "ok", "uptime_seconds": self.uptime_seconds, "metrics": summary}
        )


def setup_health_routes(
    app: web.Application,
    engine: "PairingEngine | None" = None,
    transport: "Transport | None" = None,
) -> HealthCheckHandler:
    """Mount the health, stats and metrics routes on an application.

    Args:
        app: aiohttp application
        engine: Pairing engine to report on
        transport: Transport whose running state gates /health

    Returns:
        The handler serving the routes
    """
    handler = HealthCheckHandler(engine=engine, transport=transport)

    app.add_routes(
        [
            web.get("/health", handler.health_check),
            web.get("/readiness", handler.readiness_check),
            web.get("/liveness", handler.liveness_check),
            web.get("/stats", handler.stats),
            web.get("/metrics", handler.metrics_endpoint),
            web.get("/metrics/summary", handler.metrics_summary),
        ]
    )

    logger.info("Health routes mounted")
    return handler
