"""
Health and metrics HTTP server for ``todo-sync watch``.

Exposes:
- GET /health: session, feed and cache status plus a metrics summary as JSON
- GET /metrics: Prometheus text format
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from aiohttp import web

from .metrics import MetricsCollector
from .session import SessionContext

if TYPE_CHECKING:
    from .sync import TodoSync


class HealthServer:
    def __init__(
        self,
        sync: TodoSync,
        session_context: SessionContext,
        host: str = "127.0.0.1",
        port: int = 9091,
        metrics: MetricsCollector | None = None,
    ):
        self._sync = sync
        self._session_context = session_context
        self._host = host
        self._port = port
        self._metrics = metrics or sync.metrics
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        subscription = self._sync.subscription
        feed_connected = bool(subscription and subscription.feed.connected)
        signed_in = self._session_context.active
        if not signed_in or self._sync.closed:
            status = "stopped"
        elif feed_connected and self._sync.loaded:
            status = "healthy"
        else:
            status = "degraded"
        body = {
            "status": status,
            "signed_in": signed_in,
            "feed_connected": feed_connected,
            "loaded": self._sync.loaded,
            "todos_cached": len(self._sync.todos),
            "metrics": self._metrics.summary(),
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )
