"""Forwarding of requests to an upstream mirror.

A Forwarder serves one route. It rebuilds the inbound request against the
route's origin, sends it through the shared httpx client and streams the
upstream response back without buffering the body.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable

import httpx
import structlog
from aiohttp import hdrs, web

from distriproxy.observability.metrics import (
    BYTES_RELAYED,
    HTTP_REQUESTS,
    REQUEST_DURATION,
    UPSTREAM_ERRORS,
    bucket_status,
)
from distriproxy.routing.table import Route

logger = structlog.get_logger()

VIA = "distriproxy"

# request header names that are not sent to the upstream server (lowercase)
FILTERED_REQUEST_HEADERS = frozenset({"connection", "host"})


def filter_request_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Copy request headers for the upstream request.

    Repeated headers keep their values and relative order. Connection and
    Host are dropped; the upstream Host is derived from the origin URL.
    """
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in FILTERED_REQUEST_HEADERS
    ]


class Forwarder:
    """Relays requests for one route to its upstream origin."""

    def __init__(self, route: Route, client: httpx.AsyncClient) -> None:
        self.route = route
        self.client = client

    def build_request(self, request: web.Request, path: str) -> httpx.Request:
        """Construct the upstream request for an inbound request.

        Args:
            request: The inbound request.
            path: Request path with the route prefix stripped.

        Raises:
            httpx.InvalidURL: If origin and path do not form a valid URL.
            ValueError: If a header cannot be encoded.
        """
        upstream_request = self.client.build_request(
            request.method,
            self.route.origin + path,
            headers=filter_request_headers(request.headers.items()),
        )

        # drop what the client adds on its own, the inbound request decides
        upstream_request.headers.pop("Connection", None)
        if hdrs.ACCEPT_ENCODING not in request.headers:
            upstream_request.headers.pop("Accept-Encoding", None)
        return upstream_request

    async def forward(self, request: web.Request, path: str) -> web.StreamResponse:
        """Serve an inbound request from the upstream origin.

        Returns 500 if the upstream request cannot be constructed and 502 if
        the upstream exchange fails. Once the upstream status has been sent,
        failures abort the connection instead.
        """
        request_start = time.monotonic()
        log = logger.bind(
            route=self.route.prefix,
            remote=request.remote,
            method=request.method,
            path=request.path,
        )

        try:
            upstream_request = self.build_request(request, path)
        except (httpx.InvalidURL, ValueError) as e:
            log.error("constructing upstream request failed", error=str(e))
            UPSTREAM_ERRORS.labels(route=self.route.prefix, kind="construct").inc()
            return self._finish(request, web.Response(status=500), request_start)

        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.RequestError as e:
            log.warning(
                "upstream request failed",
                url=str(upstream_request.url),
                error=str(e) or type(e).__name__,
            )
            UPSTREAM_ERRORS.labels(route=self.route.prefix, kind="request").inc()
            return self._finish(request, web.Response(status=502), request_start)

        try:
            response = await self._relay(request, upstream, log)
        except asyncio.CancelledError:
            self._record(request, upstream.status_code, request_start)
            raise
        finally:
            await upstream.aclose()
        return self._finish(request, response, request_start)

    async def _relay(
        self,
        request: web.Request,
        upstream: httpx.Response,
        log: structlog.typing.FilteringBoundLogger,
    ) -> web.StreamResponse:
        response = web.StreamResponse(
            status=upstream.status_code,
            reason=upstream.reason_phrase or None,
        )

        # copy header from response
        for name, value in upstream.headers.multi_items():
            response.headers.add(name, value)
        response.headers.add(hdrs.VIA, VIA)

        relayed = 0
        try:
            await response.prepare(request)
            # raw bytes, Content-Encoding and Content-Length stay valid
            async for chunk in upstream.aiter_raw():
                await response.write(chunk)
                relayed += len(chunk)
            await response.write_eof()
        except asyncio.CancelledError:
            log.info("client went away, upstream request aborted", bytes=relayed)
            raise
        except (httpx.HTTPError, httpx.StreamError, ConnectionError) as e:
            log.warning(
                "passing response failed",
                status=upstream.status_code,
                bytes=relayed,
                error=str(e) or type(e).__name__,
            )
            UPSTREAM_ERRORS.labels(route=self.route.prefix, kind="stream").inc()
            # the status line is out, a truncated body must not look complete
            if request.transport is not None:
                request.transport.close()
            return response
        finally:
            BYTES_RELAYED.labels(route=self.route.prefix).inc(relayed)

        log.info(
            f"---> {upstream.status_code} {upstream.reason_phrase}",
            status=upstream.status_code,
            bytes=relayed,
        )
        return response

    def _finish(
        self, request: web.Request, response: web.StreamResponse, request_start: float
    ) -> web.StreamResponse:
        self._record(request, response.status, request_start)
        return response

    def _record(self, request: web.Request, status: int, request_start: float) -> None:
        REQUEST_DURATION.observe(time.monotonic() - request_start)
        HTTP_REQUESTS.labels(
            route=self.route.prefix,
            method=request.method,
            status=bucket_status(status),
        ).inc()
