"""Listener acquisition, server assembly and lifecycle."""

from distriproxy.server.app import ProxyServer, create_app, create_upstream_client
from distriproxy.server.lifecycle import (
    InflightTracker,
    LifecycleState,
    ShutdownCoordinator,
    ShutdownOutcome,
)
from distriproxy.server.listener import (
    AcquiredListener,
    acquire_listener,
    bind_listener,
    inherited_sockets,
    listen_fds,
    parse_bind,
)
from distriproxy.server.tls import create_ssl_context

__all__ = [
    "AcquiredListener",
    "InflightTracker",
    "LifecycleState",
    "ProxyServer",
    "ShutdownCoordinator",
    "ShutdownOutcome",
    "acquire_listener",
    "bind_listener",
    "create_app",
    "create_ssl_context",
    "create_upstream_client",
    "inherited_sockets",
    "listen_fds",
    "parse_bind",
]
