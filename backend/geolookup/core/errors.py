"""Exception taxonomy for the location store.

``InvalidLocation`` is raised synchronously while building a Location and
is never retried. ``EngineError`` surfaces from the Redis adapters when the
engine rejects a command, e.g. with a WRONGTYPE or READONLY reply.
Its subclass ``EngineUnavailable`` covers a connection that is
down, timed out or already closed.
"""

from __future__ import annotations

from collections.abc import Iterable


class LocationStoreError(Exception):
    """Base class for all location store failures."""


class InvalidLocation(LocationStoreError, ValueError):
    """Raised when an id or coordinate pair cannot form a Location."""

    def __init__(self, location_id: object, reason: str) -> None:
        self.location_id = location_id
        self.reason = reason
        super().__init__(f"Invalid location {location_id!r}: {reason}")


class EngineError(LocationStoreError):
    """Raised when the metadata or geo engine fails a command."""

    summary = "Engine error"

    def __init__(self, operation: str, ids: Iterable[str] = ()) -> None:
        self.operation = operation
        self.ids = list(ids)
        shown = ", ".join(self.ids[:5])
        if len(self.ids) > 5:
            shown += f", ... ({len(self.ids)} ids)"
        super().__init__(f"{self.summary} during {operation} [{shown}]")


class EngineUnavailable(EngineError):
    """Raised when the metadata or geo engine cannot be reached."""

    summary = "Engine unavailable"
