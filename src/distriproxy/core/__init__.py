"""Core."""

from .exceptions import (
    BindError,
    ConfigError,
    DistriproxyError,
    ExitCode,
    ListenerAmbiguityError,
    ListenerError,
    RouteTableError,
    TLSConfigError,
)

__all__ = [
    "BindError",
    "ConfigError",
    "DistriproxyError",
    "ExitCode",
    "ListenerAmbiguityError",
    "ListenerError",
    "RouteTableError",
    "TLSConfigError",
]
