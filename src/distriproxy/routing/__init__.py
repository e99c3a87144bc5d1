"""Distriproxy Routing Module.

Maps path prefixes on the proxy onto upstream mirror origins.

Usage:
    from distriproxy.routing import Route, RouteTable

    table = RouteTable([
        Route(prefix="/debian", origin="https://deb.debian.org/debian"),
    ])

    match = table.match("/debian/dists/stable/Release")
    if match:
        print(f"Forward to {match.upstream_url}")
"""

from distriproxy.routing.table import DEFAULT_ROUTES, Route, RouteMatch, RouteTable

__all__ = [
    "DEFAULT_ROUTES",
    "Route",
    "RouteMatch",
    "RouteTable",
]
