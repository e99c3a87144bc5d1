"""Prefix route table.

Maps path prefixes on the proxy to upstream origins. The table is built once
at startup, validated, and never mutated afterwards, so request handlers read
it without locking.

Example:
    table = RouteTable([Route(prefix="/debian", origin="https://deb.debian.org/debian")])

    match = table.match("/debian/pool/main/a.deb")
    if match:
        match.upstream_url  # https://deb.debian.org/debian/pool/main/a.deb
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from distriproxy.core.exceptions import RouteTableError

# Unreserved and sub-delim characters only, so a prefix reads the same
# percent-encoded or not.
_PREFIX_PATTERN = re.compile(r"^(/[A-Za-z0-9._~!$&'()*+,;=:@-]+)+$")


@dataclass(frozen=True)
class Route:
    """A path prefix mounted onto an upstream origin."""

    prefix: str
    """Mount point on the proxy, e.g. "/debian"."""

    origin: str
    """Upstream base URL, e.g. "https://deb.debian.org/debian"."""

    def __post_init__(self) -> None:
        prefix = self.prefix.rstrip("/")
        if not prefix or not _PREFIX_PATTERN.match(prefix):
            raise RouteTableError(f"Invalid route prefix: {self.prefix!r}")
        object.__setattr__(self, "prefix", prefix)

        # strip trailing slash, the stripped request path carries its own
        origin = self.origin.rstrip("/")
        if not origin:
            raise RouteTableError(f"Empty upstream origin for prefix {prefix!r}")
        object.__setattr__(self, "origin", origin)

    def strip(self, path: str) -> str | None:
        """Return path with the prefix removed, or None if it does not match.

        A path matches if it equals the prefix or continues with "/" after it.
        The result always starts with "/".
        """
        if path == self.prefix:
            return "/"
        if path.startswith(self.prefix + "/"):
            return path[len(self.prefix) :]
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert route to dictionary."""
        return {"prefix": self.prefix, "origin": self.origin}


@dataclass(frozen=True)
class RouteMatch:
    """Result of matching a request path against the table."""

    route: Route
    path: str
    """Request path with the route prefix stripped, starting with "/"."""

    @property
    def upstream_url(self) -> str:
        """The URL to request upstream."""
        return self.route.origin + self.path


DEFAULT_ROUTES: tuple[Route, ...] = (
    Route("/debian", "https://deb.debian.org/debian"),
    Route("/debian-security", "https://deb.debian.org/debian-security"),
    Route("/centos", "https://ftp.halifax.rwth-aachen.de/centos"),
    Route("/centos-vault", "http://vault.centos.org"),
    Route("/centos-debuginfo", "http://debuginfo.centos.org"),
    Route("/centos-epel", "https://mirror.netcologne.de/fedora-epel"),
)


class RouteTable:
    """Immutable set of non-overlapping prefix routes.

    No prefix may equal another or be a path-segment prefix of another:
    "/centos" and "/centos/vault" overlap, "/centos" and "/centos-vault" do not.
    """

    __slots__ = ("_routes",)

    def __init__(self, routes: Iterable[Route]) -> None:
        ordered = tuple(sorted(routes, key=lambda r: r.prefix))
        for i, current in enumerate(ordered):
            for previous in ordered[:i]:
                if current.prefix == previous.prefix:
                    raise RouteTableError(f"Duplicate route prefix: {current.prefix!r}")
                if current.prefix.startswith(previous.prefix + "/"):
                    raise RouteTableError(
                        f"Route prefix {current.prefix!r} overlaps {previous.prefix!r}"
                    )
        self._routes = ordered

    def match(self, path: str) -> RouteMatch | None:
        """Find the route serving a request path.

        Args:
            path: The raw request path, without query string.

        Returns:
            RouteMatch if a prefix matches, None otherwise.
        """
        for route in self._routes:
            stripped = route.strip(path)
            if stripped is not None:
                return RouteMatch(route=route, path=stripped)
        return None

    @property
    def prefixes(self) -> list[str]:
        """All configured prefixes in sorted order."""
        return [route.prefix for route in self._routes]

    def to_dict(self) -> dict[str, Any]:
        """Export the table to a dictionary."""
        return {"routes": [route.to_dict() for route in self._routes]}

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __len__(self) -> int:
        """Return number of routes."""
        return len(self._routes)

    def __bool__(self) -> bool:
        """Return True if the table has any routes."""
        return bool(self._routes)
