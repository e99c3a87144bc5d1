"""Dispatch of inbound requests to the forwarder of the matching route."""

from __future__ import annotations

import httpx
import structlog
from aiohttp import web

from distriproxy.observability.metrics import REJECTED_REQUESTS
from distriproxy.proxy.forwarder import Forwarder
from distriproxy.proxy.guard import boundary_response
from distriproxy.routing.table import RouteTable

logger = structlog.get_logger()


class Router:
    """Catch-all aiohttp handler that serves every path of the proxy.

    Each route gets its own Forwarder; all of them share one upstream client.
    Paths outside the configured prefixes get a 404.
    """

    def __init__(self, routes: RouteTable, client: httpx.AsyncClient) -> None:
        self.routes = routes
        self._forwarders = {route.prefix: Forwarder(route, client) for route in routes}

    def forwarder(self, prefix: str) -> Forwarder:
        """Get the forwarder serving a prefix."""
        return self._forwarders[prefix]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Route a request that already passed the guard."""
        match = self.routes.match(request.rel_url.raw_path)
        if match is None:
            logger.info(
                "-> 404 not found",
                remote=request.remote,
                method=request.method,
                path=request.path,
            )
            REJECTED_REQUESTS.labels(reason="not_found").inc()
            return boundary_response(404)

        return await self.forwarder(match.route.prefix).forward(request, match.path)
