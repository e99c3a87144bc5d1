"""Listening socket acquisition.

A supervisor such as systemd may open the listening socket itself and hand it
to the process (socket activation), which allows restarts without refusing
connections. Without an inherited socket the proxy binds one on its own.

The handoff protocol: LISTEN_PID names the process the sockets are meant for,
LISTEN_FDS counts them, and they occupy file descriptors from 3 upwards.
"""

from __future__ import annotations

import os
import socket
from collections.abc import MutableMapping, Sequence
from dataclasses import dataclass

import structlog

from distriproxy.core.exceptions import BindError, ConfigError, ListenerAmbiguityError

logger = structlog.get_logger()

LISTEN_FDS_START = 3
LISTEN_ENV_VARS = ("LISTEN_PID", "LISTEN_FDS", "LISTEN_FDNAMES")


@dataclass
class AcquiredListener:
    """A listening socket ready to be served."""

    sock: socket.socket
    activated: bool
    """True if the socket was inherited from the supervisor."""

    @property
    def address(self) -> str:
        """Printable local address of the socket."""
        name = self.sock.getsockname()
        if isinstance(name, tuple):
            host, port = name[0], name[1]
            return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
        return str(name)


def listen_fds(
    environ: MutableMapping[str, str] | None = None,
    pid: int | None = None,
    unset_env: bool = True,
) -> list[int]:
    """Return the file descriptors passed by the supervisor.

    Args:
        environ: Environment to read, defaults to os.environ.
        pid: Process id the sockets must be addressed to, defaults to ours.
        unset_env: Remove the activation variables so that child processes
            do not mistake the sockets for their own.

    Returns:
        The inherited descriptors, empty if none were passed to this process.
    """
    environ = os.environ if environ is None else environ
    pid = os.getpid() if pid is None else pid

    try:
        if environ.get("LISTEN_PID", "") != str(pid):
            return []

        raw_count = environ.get("LISTEN_FDS", "")
        try:
            count = int(raw_count)
        except ValueError:
            logger.warning("ignoring invalid LISTEN_FDS", value=raw_count)
            return []
        if count <= 0:
            return []
        return list(range(LISTEN_FDS_START, LISTEN_FDS_START + count))
    finally:
        if unset_env:
            for name in LISTEN_ENV_VARS:
                environ.pop(name, None)


def inherited_sockets(fds: Sequence[int] | None = None) -> list[socket.socket]:
    """Wrap the inherited descriptors as sockets."""
    if fds is None:
        fds = listen_fds()

    sockets = []
    for fd in fds:
        os.set_inheritable(fd, False)
        sockets.append(socket.socket(fileno=fd))
    return sockets


def parse_bind(bind: str) -> tuple[str, int]:
    """Parse bind address into host and port.

    An empty host (":8080") means all interfaces.
    """
    host, sep, port = bind.rpartition(":")
    if not sep:
        host, port = "", bind
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Invalid bind address: {bind!r}") from None
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"Invalid port in bind address: {bind!r}")
    return host, port_number


def bind_listener(bind: str, backlog: int = 128) -> socket.socket:
    """Bind and listen on a fresh TCP socket.

    Raises:
        BindError: If the address cannot be bound.
    """
    host, port = parse_bind(bind)
    try:
        if not host and socket.has_dualstack_ipv6():
            return socket.create_server(
                ("", port),
                family=socket.AF_INET6,
                backlog=backlog,
                dualstack_ipv6=True,
            )
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        return socket.create_server((host, port), family=family, backlog=backlog)
    except OSError as e:
        raise BindError(bind, e) from e


def acquire_listener(
    bind: str,
    inherited: Sequence[socket.socket] | None = None,
) -> AcquiredListener:
    """Select the socket the proxy will serve on.

    Args:
        bind: Address to bind when no socket was inherited.
        inherited: Sockets passed by the supervisor, read from the
            environment if omitted.

    Raises:
        ListenerAmbiguityError: If more than one socket was inherited.
        BindError: If no socket was inherited and binding fails.
    """
    if inherited is None:
        inherited = inherited_sockets()

    if len(inherited) == 1:
        listener = AcquiredListener(sock=inherited[0], activated=True)
        logger.debug("using inherited socket", address=listener.address)
        return listener

    if len(inherited) > 1:
        raise ListenerAmbiguityError(len(inherited))

    listener = AcquiredListener(sock=bind_listener(bind), activated=False)
    logger.debug("bound fresh socket", address=listener.address)
    return listener
