"""Rejection of open-proxy requests and disallowed methods.

The guard runs as aiohttp middleware ahead of routing, so it applies to every
request regardless of the path prefix.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from aiohttp import hdrs, web

from distriproxy.observability.metrics import REJECTED_REQUESTS

logger = structlog.get_logger()

SERVER_NAME = "distriproxy"

ALLOWED_METHODS = frozenset({hdrs.METH_GET, hdrs.METH_HEAD})

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def is_proxy_request(target: str) -> bool:
    """Check whether a raw request target names a host.

    Origin-form targets ("/path") and the asterisk form ("*") are what a
    server sees from ordinary clients. Absolute-form ("http://host/path") and
    authority-form ("host:443") targets are what clients send to a forward
    proxy.
    """
    return not target.startswith("/") and target != "*"


def boundary_response(status: int, text: str | None = None) -> web.Response:
    """Build a response the proxy answers itself, marked with its name."""
    response = web.Response(status=status, text=text)
    response.headers[hdrs.SERVER] = SERVER_NAME
    return response


@web.middleware
async def reject_proxy_requests(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Reject proxy requests and methods other than GET/HEAD.

    All other requests are passed to the next handler.
    """
    if is_proxy_request(request.raw_path):
        logger.warning(
            "reject proxy request",
            remote=request.remote,
            target=request.raw_path,
        )
        REJECTED_REQUESTS.labels(reason="proxy_request").inc()
        return boundary_response(400, "this is not a proxy\n")

    if request.method not in ALLOWED_METHODS:
        logger.warning(
            "reject invalid method",
            remote=request.remote,
            method=request.method,
        )
        REJECTED_REQUESTS.labels(reason="method").inc()
        response = boundary_response(405)
        response.headers[hdrs.ALLOW] = ", ".join(sorted(ALLOWED_METHODS))
        return response

    return await handler(request)
