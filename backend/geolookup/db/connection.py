"""Connection lifecycle tracking for the backing Redis engine.

The Redis client reconnects on its own, so the store never rejects a
command just because the engine looked unhealthy a moment ago. Instead the
monitor records the state the engine was last seen in, logs commands
issued while it is not ready, turns connection-level failures into
``EngineUnavailable`` and engine replies into ``EngineError``, with the
operation name and ids attached.

States move ``DISCONNECTED -> CONNECTING -> READY``; a failed command moves
``READY -> DEGRADED`` and the next successful one moves back to ``READY``.
``CLOSED`` is terminal.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import AsyncIterator, Iterable

from redis import exceptions as redis_exceptions

from geolookup.core.errors import EngineError, EngineUnavailable

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
)


class ConnectionState(enum.StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


class ConnectionMonitor:
    """Queryable connection state with a way to await readiness."""

    def __init__(self, name: str = "redis") -> None:
        self.name = name
        self._state = ConnectionState.DISCONNECTED
        self._ready = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ConnectionState.READY

    def _transition(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        if self._state is ConnectionState.CLOSED:
            logger.warning(
                "%s connection is closed; ignoring transition to %s",
                self.name,
                state,
            )
            return
        logger.info("%s connection %s -> %s", self.name, self._state, state)
        self._state = state
        if state is ConnectionState.READY:
            self._ready.set()
        else:
            self._ready.clear()

    def mark_connecting(self) -> None:
        self._transition(ConnectionState.CONNECTING)

    def mark_ready(self) -> None:
        self._transition(ConnectionState.READY)

    def mark_degraded(self) -> None:
        self._transition(ConnectionState.DEGRADED)

    def mark_closed(self) -> None:
        self._transition(ConnectionState.CLOSED)

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Block until the next READY transition.

        Returns:
            True once ready, False if the timeout elapsed first.
        """
        if self.ready:
            return True
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except TimeoutError:
            return False
        return True

    @contextlib.asynccontextmanager
    async def track(
        self, operation: str, ids: Iterable[str] = ()
    ) -> AsyncIterator[None]:
        """Wrap one engine command.

        Raises:
            EngineUnavailable: If the command failed at the connection level
                or the monitor is closed.
            EngineError: If the engine rejected the command.
        """
        if self._state is ConnectionState.CLOSED:
            raise EngineUnavailable(operation, ids)
        if not self.ready:
            logger.warning(
                "%s issued while %s connection is %s",
                operation,
                self.name,
                self._state,
            )
        try:
            yield
        except CONNECTION_ERRORS as exc:
            self.mark_degraded()
            error = EngineUnavailable(operation, ids)
            logger.error("%s: %s", error, exc)
            raise error from exc
        except redis_exceptions.RedisError as exc:
            # The engine answered, so the connection itself is healthy.
            failure = EngineError(operation, ids)
            logger.error("%s: %s", failure, exc)
            raise failure from exc
        self.mark_ready()
