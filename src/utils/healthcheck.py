# -*- coding: utf-8 -*-
"""
Simple HTTP healthcheck endpoint for monitoring.
Returns engine status, uptime, and scanner / dispatcher counters.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from aiohttp import web
from loguru import logger

StatusProvider = Callable[[], Dict[str, Any]]


def _format_uptime(seconds: float) -> str:
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{days}d {hours}h {minutes}m"


class HealthcheckServer:
    """Simple HTTP server for healthcheck endpoint."""

    def __init__(self, host: str = "0.0.0.0", port: int = 8080):
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self.start_time = datetime.now(timezone.utc)
        # name -> callable returning a JSON-serialisable dict (scanner.status, ...)
        self.status_providers: Dict[str, StatusProvider] = {}

        # Setup routes
        self.app.router.add_get('/health', self.health_handler)
        self.app.router.add_get('/status', self.status_handler)
        self.app.router.add_get('/', self.index_handler)

    def register(self, name: str, provider: StatusProvider) -> None:
        self.status_providers[name] = provider

    async def health_handler(self, request: web.Request) -> web.Response:
        """
        Simple health check endpoint.
        Returns 200 OK if the engine is running.
        """
        return web.json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    def build_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        uptime_seconds = (now - self.start_time).total_seconds()

        status: Dict[str, Any] = {
            "status": "running",
            "uptime": _format_uptime(uptime_seconds),
            "uptime_seconds": int(uptime_seconds),
            "start_time": self.start_time.isoformat(),
            "timestamp": now.isoformat(),
        }
        for name, provider in self.status_providers.items():
            try:
                status[name] = provider()
            except Exception as e:
                logger.warning(f"Status provider '{name}' failed: {e}")
                status[name] = {"error": str(e)}
        return status

    async def status_handler(self, request: web.Request) -> web.Response:
        """
        Detailed status endpoint with engine metrics.
        """
        return web.json_response(self.build_status())

    async def index_handler(self, request: web.Request) -> web.Response:
        """Simple index page with links."""
        html = """
        <html>
        <head><title>Alert Engine Healthcheck</title></head>
        <body>
            <h1>Alert Engine Healthcheck</h1>
            <p>Endpoints:</p>
            <ul>
                <li><a href="/health">/health</a> - Simple health check (200 OK)</li>
                <li><a href="/status">/status</a> - Scanner and dispatcher status</li>
            </ul>
        </body>
        </html>
        """
        return web.Response(text=html, content_type='text/html')

    async def start(self):
        """Start the healthcheck server."""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()
            logger.info(f"Healthcheck server started on http://{self.host}:{self.port}")
        except OSError as e:
            logger.error(f"Failed to start healthcheck server: {e}")

    async def stop(self):
        """Stop the healthcheck server."""
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        logger.info("Healthcheck server stopped")

    async def run(self):
        """Run healthcheck server (keeps running until cancelled)."""
        await self.start()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            await self.stop()
            raise
