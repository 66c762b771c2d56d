"""HTTP exposition of the collector registry."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from voipmonitor_exporter.config import ExporterConfig, parse_listen_address
from voipmonitor_exporter.metrics.collector import VoipmonitorCollector

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>Voipmonitor Calls Exporter</title></head>
<body>
<h1>Voipmonitor Calls Exporter</h1>
<p><a href='{path}'>Metrics</a></p>
</body>
</html>
"""


def create_app(registry: CollectorRegistry, telemetry_path: str = "/metrics") -> web.Application:
    """Build the exporter web application.

    Args:
        registry: Registry rendered on every metrics request.
        telemetry_path: Path serving the metrics.

    Returns:
        aiohttp Application.
    """

    async def handle_metrics(request: web.Request) -> web.Response:
        """Render the registry off the event loop."""
        loop = asyncio.get_running_loop()
        output = await loop.run_in_executor(None, generate_latest, registry)
        return web.Response(body=output, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def handle_index(request: web.Request) -> web.Response:
        return web.Response(
            text=LANDING_PAGE.format(path=telemetry_path),
            content_type="text/html",
        )

    async def handle_health(request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok"})

    app = web.Application()
    app.router.add_get(telemetry_path, handle_metrics)
    app.router.add_get("/health", handle_health)
    if telemetry_path != "/":
        app.router.add_get("/", handle_index)
    return app


def build_registry(config: ExporterConfig) -> CollectorRegistry:
    """Create a registry holding only the exporter's collector."""
    registry = CollectorRegistry()
    registry.register(VoipmonitorCollector(config))
    return registry


async def run_server(config: ExporterConfig) -> None:
    """Serve metrics until cancelled.

    Args:
        config: Exporter configuration.
    """
    host, port = parse_listen_address(config.web.listen_address)
    app = create_app(build_registry(config), config.web.telemetry_path)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(
        f"Serving {len(config.roster)} components on "
        f"http://{host}:{port}{config.web.telemetry_path}"
    )

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
