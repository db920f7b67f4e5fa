"""Exclusive ownership of one database connection for one invocation.

State machine::

    OPEN ──> MIGRATING ──> COMMITTED ──┐
               │                       ├──> CLOSING ──> CLOSED
               └────────> FAILED ──────┘

Any state may jump to FAILED when an exception escapes the lease scope, and
any state reaches CLOSED through ``release()``.  Release always attempts a
rollback before closing; rollback and close errors are logged and swallowed.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from types import TracebackType
from typing import Any

from schemaflow.core.errors import SchemaflowError
from schemaflow.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle states of a leased connection."""

    OPEN = "open"
    MIGRATING = "migrating"
    COMMITTED = "committed"
    FAILED = "failed"
    CLOSING = "closing"
    CLOSED = "closed"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.OPEN: frozenset({ConnectionState.MIGRATING, ConnectionState.FAILED, ConnectionState.CLOSING}),
    ConnectionState.MIGRATING: frozenset({ConnectionState.COMMITTED, ConnectionState.FAILED, ConnectionState.CLOSING}),
    ConnectionState.COMMITTED: frozenset({ConnectionState.FAILED, ConnectionState.CLOSING}),
    ConnectionState.FAILED: frozenset({ConnectionState.CLOSING}),
    ConnectionState.CLOSING: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


class ConnectionLease:
    """
    A connection checked out for exactly one migration invocation.

    Parameters
    ----------
    connection
        Open SQLAlchemy ``Connection``.
    source
        Human-readable origin (``datasource:<name>`` or ``direct:<url>``),
        used in log events only.
    on_close
        Called after the connection is closed, e.g. to dispose the private
        engine of a direct connection.
    """

    def __init__(
        self,
        connection: Any,
        *,
        source: str,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.connection = connection
        self.source = source
        self._on_close = on_close
        self._state = ConnectionState.OPEN

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, target: ConnectionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise SchemaflowError(
                f"Invalid connection state transition: {self._state.value} -> {target.value}"
            )
        self._state = target

    def begin_migration(self) -> None:
        self._transition(ConnectionState.MIGRATING)

    def mark_committed(self) -> None:
        self._transition(ConnectionState.COMMITTED)

    def mark_failed(self) -> None:
        if self._state is not ConnectionState.FAILED:
            self._transition(ConnectionState.FAILED)

    def release(self) -> None:
        """Roll back, close, and run ``on_close``; never raises."""
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        failed = self._state is ConnectionState.FAILED
        self._transition(ConnectionState.CLOSING)

        try:
            self.connection.rollback()
            if failed:
                logger.info("connection.rolled_back", source=self.source)
        except Exception as e:
            logger.warning("connection.rollback_failed", source=self.source, error=str(e))

        try:
            self.connection.close()
        except Exception as e:
            logger.warning("connection.close_failed", source=self.source, error=str(e))

        if self._on_close is not None:
            try:
                self._on_close()
            except Exception as e:
                logger.warning("connection.dispose_failed", source=self.source, error=str(e))

        self._transition(ConnectionState.CLOSED)
        logger.debug("connection.closed", source=self.source)

    def __enter__(self) -> ConnectionLease:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and self._state not in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            self.mark_failed()
        self.release()

    def __repr__(self) -> str:
        return f"ConnectionLease(source={self.source!r}, state={self._state.value})"


__all__ = [
    "ConnectionState",
    "ConnectionLease",
]
