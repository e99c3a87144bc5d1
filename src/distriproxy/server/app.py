"""Proxy server assembly.

Wires the guard, router and forwarders into an aiohttp application, serves it
on the acquired listener and hands teardown to the shutdown coordinator.
"""

from __future__ import annotations

import contextlib
import socket
import ssl
from http.cookiejar import CookieJar, DefaultCookiePolicy

import httpx
import structlog
from aiohttp import web

from distriproxy.core.config import ServerSettings
from distriproxy.observability.metrics import generate_metrics, get_content_type
from distriproxy.proxy.guard import reject_proxy_requests
from distriproxy.proxy.router import Router
from distriproxy.routing.table import RouteTable
from distriproxy.server.lifecycle import (
    InflightTracker,
    LifecycleState,
    ShutdownCoordinator,
    ShutdownOutcome,
)
from distriproxy.server.listener import AcquiredListener, bind_listener

logger = structlog.get_logger()

# handlers still running when the drain ends are cancelled after this long
FORCE_CLOSE_TIMEOUT = 1.0


def create_upstream_client(
    settings: ServerSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client shared by all routes.

    Only connecting is bounded; package downloads may take arbitrarily long.
    The client is shared between all inbound clients, so it never keeps
    cookies set by an upstream.
    """
    timeout = httpx.Timeout(
        connect=settings.connect_timeout,
        read=None,
        write=None,
        pool=None,
    )
    limits = httpx.Limits(
        max_connections=settings.max_connections,
        max_keepalive_connections=settings.max_keepalive,
    )
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=settings.follow_redirects,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
        transport=transport,
    )


def create_app(router: Router, tracker: InflightTracker) -> web.Application:
    """Build the proxy application.

    Every path and method reaches the router after passing the guard.
    """
    app = web.Application(middlewares=[tracker.middleware, reject_proxy_requests])
    app.router.add_route("*", "/{path:.*}", router.handle)
    return app


class ProxyServer:
    """Reverse proxy in front of the configured package mirrors."""

    def __init__(
        self,
        settings: ServerSettings,
        routes: RouteTable,
        client: httpx.AsyncClient | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.settings = settings
        self.routes = routes
        self.ssl_context = ssl_context
        self._owns_client = client is None
        self.client = client if client is not None else create_upstream_client(settings)
        self.tracker = InflightTracker()
        self.coordinator = ShutdownCoordinator(settings.shutdown_timeout, self.tracker)
        self.router = Router(routes, self.client)
        self.app = create_app(self.router, self.tracker)
        self.listener: AcquiredListener | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.SockSite | None = None
        self._metrics_runner: web.AppRunner | None = None
        self._metrics_sock: socket.socket | None = None

    @property
    def state(self) -> LifecycleState:
        return self.coordinator.state

    async def start(self, listener: AcquiredListener) -> None:
        """Serve the application on an acquired listener."""
        self.listener = listener

        self._runner = web.AppRunner(
            self.app,
            handler_cancellation=True,
            shutdown_timeout=FORCE_CLOSE_TIMEOUT,
            access_log=None,
        )
        await self._runner.setup()
        self._site = web.SockSite(self._runner, listener.sock, ssl_context=self.ssl_context)
        await self._site.start()

        if self.settings.metrics_bind:
            await self._start_metrics(self.settings.metrics_bind)

        self.coordinator.mark_listening()
        if listener.activated:
            logger.info(
                f"listening on {listener.address} via systemd socket activation",
                tls=self.ssl_context is not None,
                routes=len(self.routes),
            )
        else:
            logger.info(
                f"listening on {listener.address}",
                tls=self.ssl_context is not None,
                routes=len(self.routes),
            )

    async def _start_metrics(self, bind: str) -> None:
        app = web.Application()
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/health", self._handle_health_check)

        self._metrics_runner = web.AppRunner(app, access_log=None)
        await self._metrics_runner.setup()
        self._metrics_sock = bind_listener(bind)
        site = web.SockSite(self._metrics_runner, self._metrics_sock)
        await site.start()
        logger.info("metrics listener started", bind=bind)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint."""
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        status = "healthy" if self.state is LifecycleState.LISTENING else "unavailable"
        return web.json_response(
            {"status": status, "state": self.state.value},
            status=200 if status == "healthy" else 503,
        )

    async def wait_closed(self) -> ShutdownOutcome:
        """Wait for a shutdown request and carry it out."""
        return await self.coordinator.run(self._stop_accepting, self.close)

    async def serve(self, listener: AcquiredListener) -> ShutdownOutcome:
        """Run until SIGINT or SIGTERM has been handled."""
        self.coordinator.install_signal_handlers()
        try:
            try:
                await self.start(listener)
            except BaseException:
                await self.close()
                raise
            return await self.wait_closed()
        finally:
            self.coordinator.remove_signal_handlers()

    async def _stop_accepting(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None and self._runner.server is not None:
            # idle keep-alive connections close now, busy ones after their request
            self._runner.server.pre_shutdown()

    async def close(self) -> None:
        """Close listeners and connections and release the upstream client."""
        if self._runner is not None:
            try:
                await self._runner.cleanup()
            except Exception as e:
                logger.error("server teardown failed", error=str(e))
            self._runner = None

        if self._metrics_runner is not None:
            with contextlib.suppress(Exception):
                await self._metrics_runner.cleanup()
            self._metrics_runner = None

        if self._owns_client:
            await self.client.aclose()
