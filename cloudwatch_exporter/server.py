"""HTTP endpoints serving metrics and health."""

import logging
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response
from prometheus_client import CONTENT_TYPE_LATEST

from .config.models import PrometheusConfig, ServerConfig
from .exporter import Exporter
from .prometheus import render
from .version import __version__


logger = logging.getLogger(__name__)

INDEX_TEMPLATE = """<html>
<head><title>CloudWatch Exporter</title></head>
<body>
<h1>CloudWatch Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
<p><a href="/health">Health</a></p>
<p>Version: {version}</p>
</body>
</html>
"""


class MetricsHandler:
    """HTTP handlers backed by an Exporter."""

    def __init__(
        self,
        exporter: Exporter,
        metrics_path: str = "/metrics",
        prometheus: Optional[PrometheusConfig] = None
    ):
        self.exporter = exporter
        self.metrics_path = metrics_path
        self.prometheus = prometheus or PrometheusConfig()

    async def metrics(self, request: web_request.Request) -> Response:
        """Run one scrape and return it in the Prometheus text format."""
        try:
            outcome = await self.exporter.scrape()
            body = render(
                outcome,
                self.exporter.describe(),
                include_runtime=self.prometheus.include_runtime_metrics,
                include_process=self.prometheus.include_process_metrics
            )
        except Exception as e:
            logger.error(f"Metrics request failed: {e}", exc_info=True)
            return web.Response(status=500, text=f"error collecting metrics: {e}\n")

        return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def health(self, request: web_request.Request) -> Response:
        """Liveness of the exporter process plus the last scrape's state."""
        last = self.exporter.last_scrape_timestamp
        return web.json_response(
            {
                "status": "healthy",
                "version": __version__,
                "up": self.exporter.up,
                "last_scrape_error": self.exporter.last_scrape_error,
                "last_scrape": (
                    datetime.fromtimestamp(last, tz=timezone.utc).isoformat() if last else None
                ),
                "total_scrapes": self.exporter.total_scrapes,
            },
            status=200
        )

    async def index(self, request: web_request.Request) -> Response:
        return web.Response(
            text=INDEX_TEMPLATE.format(metrics_path=self.metrics_path, version=__version__),
            content_type="text/html"
        )


class ExporterServer:
    """HTTP server exposing /metrics, /health and an index page."""

    def __init__(
        self,
        exporter: Exporter,
        config: Optional[ServerConfig] = None,
        prometheus: Optional[PrometheusConfig] = None
    ):
        self.exporter = exporter
        self.config = config or ServerConfig()
        self.prometheus = prometheus or PrometheusConfig()
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        handler = MetricsHandler(self.exporter, self.config.metrics_path, self.prometheus)
        app.router.add_get(self.config.metrics_path, handler.metrics)
        app.router.add_get('/health', handler.health)
        if self.config.metrics_path != '/':
            app.router.add_get('/', handler.index)
        return app

    async def start(self):
        """Start the HTTP server."""
        host, port = self.config.listen_address, self.config.port
        logger.info(f"Starting HTTP server on {host}:{port}")

        self.app = self.build_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()

        logger.info(
            f"HTTP server started on http://{host}:{port}",
            extra={"metrics_path": self.config.metrics_path}
        )

    async def stop(self):
        """Stop the HTTP server."""
        logger.info("Stopping HTTP server")

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("HTTP server stopped")
