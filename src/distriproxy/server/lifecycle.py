"""Server lifecycle and graceful shutdown.

The coordinator waits for SIGINT or SIGTERM, then stops accepting
connections and gives in-flight requests a bounded time to finish:

    STARTING -> LISTENING -> DRAINING -> STOPPED
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog
from aiohttp import web

from distriproxy.observability.metrics import IN_FLIGHT_REQUESTS

logger = structlog.get_logger()

# wait ten seconds for clients to finish their business before shutting down
DEFAULT_SHUTDOWN_TIMEOUT = 10.0

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleState(Enum):
    """Server lifecycle states."""

    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


class ShutdownOutcome(Enum):
    """How the drain phase ended."""

    CLEAN = "clean"
    TIMED_OUT = "timed_out"


class InflightTracker:
    """Counts requests that are currently being handled."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    @web.middleware
    async def middleware(self, request: web.Request, handler) -> web.StreamResponse:
        self._count += 1
        self._idle.clear()
        IN_FLIGHT_REQUESTS.inc()
        try:
            return await handler(request)
        finally:
            self._count -= 1
            IN_FLIGHT_REQUESTS.dec()
            if self._count == 0:
                self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no request is in flight."""
        await self._idle.wait()


class ShutdownCoordinator:
    """Drives the server from LISTENING through DRAINING to STOPPED.

    The coordinator does not know about the HTTP server; run() receives the
    callables that close the listener and tear the server down.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        tracker: InflightTracker | None = None,
    ) -> None:
        self.timeout = timeout
        self.tracker = tracker or InflightTracker()
        self.state = LifecycleState.STARTING
        self.received_signal: signal.Signals | None = None
        self._triggered = asyncio.Event()
        self._reached = {state: asyncio.Event() for state in LifecycleState}
        self._reached[LifecycleState.STARTING].set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def _set_state(self, state: LifecycleState) -> None:
        logger.debug("lifecycle state changed", previous=self.state.value, state=state.value)
        self.state = state
        self._reached[state].set()

    def mark_listening(self) -> None:
        """Record that the listener is acquired and being served."""
        self._set_state(LifecycleState.LISTENING)

    async def wait_for_state(self, state: LifecycleState) -> None:
        """Wait until the lifecycle has reached a state."""
        await self._reached[state].wait()

    @property
    def triggered(self) -> bool:
        return self._triggered.is_set()

    def trigger(self, sig: signal.Signals | int | None = None) -> None:
        """Request a graceful shutdown. Only the first call has an effect."""
        if self._triggered.is_set():
            logger.warning("shutdown already in progress", signal=_signal_name(sig))
            return
        if sig is not None:
            self.received_signal = signal.Signals(sig)
        self._triggered.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Arm the coordinator for SIGINT and SIGTERM."""
        self._loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            self._loop.add_signal_handler(sig, self.trigger, sig)

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in SHUTDOWN_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    async def run(
        self,
        stop_accepting: Callable[[], Awaitable[None]],
        force_close: Callable[[], Awaitable[None]],
    ) -> ShutdownOutcome:
        """Wait for the trigger, then drain and stop the server.

        Args:
            stop_accepting: Closes the listener; accepted connections stay open.
            force_close: Closes whatever is still open and releases resources.

        Returns:
            CLEAN if every in-flight request finished within the timeout,
            TIMED_OUT if connections had to be closed forcibly.
        """
        await self._triggered.wait()
        logger.info(
            f"received {_signal_name(self.received_signal)}, shutting down gracefully",
            in_flight=self.tracker.count,
        )

        await stop_accepting()
        self._set_state(LifecycleState.DRAINING)

        try:
            await asyncio.wait_for(self.tracker.wait_idle(), self.timeout)
            outcome = ShutdownOutcome.CLEAN
        except TimeoutError:
            logger.critical(
                "shutdown failed: drain timed out",
                timeout=self.timeout,
                in_flight=self.tracker.count,
            )
            outcome = ShutdownOutcome.TIMED_OUT

        await force_close()
        self._set_state(LifecycleState.STOPPED)
        if outcome is ShutdownOutcome.CLEAN:
            logger.info("shutdown completed")
        return outcome


def _signal_name(sig: signal.Signals | int | None) -> str:
    if sig is None:
        return "shutdown request"
    return signal.Signals(sig).name
