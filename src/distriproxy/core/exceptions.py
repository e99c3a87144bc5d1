"""Exception hierarchy and process exit codes."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes."""

    OK = 0
    FAILURE = 1
    USAGE = 2
    CONFIG = 3


class DistriproxyError(Exception):
    """Base class for all distriproxy errors."""

    exit_code: ExitCode = ExitCode.FAILURE


class ConfigError(DistriproxyError):
    """Invalid or unreadable configuration."""

    exit_code = ExitCode.CONFIG

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class RouteTableError(ConfigError):
    """Route prefixes or origins that cannot form a valid route table."""


class TLSConfigError(ConfigError):
    """TLS enabled without usable certificate or key."""

    exit_code = ExitCode.FAILURE


class ListenerError(DistriproxyError):
    """No usable listening socket could be acquired."""


class BindError(ListenerError):
    """Binding the fallback listener failed."""

    def __init__(self, bind: str, error: OSError) -> None:
        super().__init__(f"unable to bind to {bind}: {error}")
        self.bind = bind
        self.error = error


class ListenerAmbiguityError(ListenerError):
    """The supervisor handed down more than one listening socket."""

    def __init__(self, count: int) -> None:
        super().__init__(f"got {count} listeners, expected one")
        self.count = count
