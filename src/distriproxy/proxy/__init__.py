"""Request guarding, routing and forwarding."""

from distriproxy.proxy.forwarder import (
    FILTERED_REQUEST_HEADERS,
    VIA,
    Forwarder,
    filter_request_headers,
)
from distriproxy.proxy.guard import (
    ALLOWED_METHODS,
    SERVER_NAME,
    boundary_response,
    is_proxy_request,
    reject_proxy_requests,
)
from distriproxy.proxy.router import Router

__all__ = [
    "ALLOWED_METHODS",
    "FILTERED_REQUEST_HEADERS",
    "SERVER_NAME",
    "VIA",
    "Forwarder",
    "Router",
    "boundary_response",
    "filter_request_headers",
    "is_proxy_request",
    "reject_proxy_requests",
]
