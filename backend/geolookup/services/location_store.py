"""Location store orchestrating the metadata store and the geo index.

Every location lives twice: as a JSON document in the metadata store and
as a point in the geo index, both keyed by the same id. There is no
transaction spanning the two, so this module sequences the writes, issues
both sides concurrently where the order does not matter, and reports any
divergence back to the caller instead of hiding it.

- Single-record operations propagate validation and engine errors.
- Batch operations drop invalid records, deduplicate ids (last one wins)
  and return a ``BatchResult`` that is falsy when the two sides disagree.
- Queries join geo results with metadata documents, geo fields winning.

Example:
    Build an in-memory store and query it:
        >>> store = LocationStore.in_memory()
        >>> await store.add_one(
        ...     "lv", {"latitude": 36.1699, "longitude": -115.1398,
        ...            "city": "Las Vegas"}
        ... )
        >>> await store.nearby({"latitude": 36.17, "longitude": -115.14})
        [{'id': 'lv', 'latitude': 36.1699, ..., 'distance': 37.8}]
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from redis import asyncio as redis_asyncio

from geolookup.core.errors import EngineError, InvalidLocation
from geolookup.db import adapters
from geolookup.db import models as db_models
from geolookup.db.connection import (
    CONNECTION_ERRORS,
    ConnectionMonitor,
    ConnectionState,
)

if TYPE_CHECKING:
    from geolookup.core import config

logger = logging.getLogger(__name__)

Record = dict[str, Any]


@dataclasses.dataclass
class BatchResult:
    """Outcome of a batched dual write or delete.

    Attributes:
        requested: Number of input entries, duplicates included.
        duplicates: Entries discarded because a later one had the same id.
        invalid: Ids dropped by validation, mapped to the reason.
        written: Ids the metadata store acknowledged.
        indexed: Number of entries the geo index acknowledged.
        metadata_failed: Ids the metadata store did not acknowledge.
        geo_failed: Ids the geo index did not acknowledge (adds only).
        errors: Engine failures keyed by side ("metadata" or "geo").
    """

    requested: int = 0
    duplicates: int = 0
    invalid: dict[str, str] = dataclasses.field(default_factory=dict)
    written: list[str] = dataclasses.field(default_factory=list)
    indexed: int = 0
    metadata_failed: list[str] = dataclasses.field(default_factory=list)
    geo_failed: list[str] = dataclasses.field(default_factory=list)
    errors: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def consistent(self) -> bool:
        """Both sides reported the same count and neither side errored."""
        return not self.errors and len(self.written) == self.indexed

    def __bool__(self) -> bool:
        return self.consistent

    def _record_error(self, side: str, error: EngineError) -> None:
        previous = self.errors.get(side)
        self.errors[side] = f"{previous}; {error}" if previous else str(error)


def _chunks(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _raise_unexpected(*outcomes: object) -> None:
    """Re-raise anything gather() returned that is not an engine failure."""
    for outcome in outcomes:
        if isinstance(outcome, BaseException) and not isinstance(
            outcome, EngineError
        ):
            raise outcome


class LocationStore:
    """One logical entity store over a metadata store and a geo index.

    Args:
        metadata: Key to document store.
        geo: Point index keyed by the same ids.
        monitor: Connection state of the engine behind both adapters.
        client: Redis client to ping on connect and close on disconnect.
        chunk_size: Maximum ids per batched engine command.
    """

    def __init__(
        self,
        metadata: adapters.MetadataStoreProtocol,
        geo: adapters.GeoIndexProtocol,
        monitor: ConnectionMonitor | None = None,
        client: redis_asyncio.Redis | None = None,
        chunk_size: int = 500,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.metadata = metadata
        self.geo = geo
        self.monitor = monitor or ConnectionMonitor()
        self.client = client
        self.chunk_size = chunk_size

    @classmethod
    def in_memory(
        cls,
        chunk_size: int = 500,
        engine: adapters.InMemoryEngine | None = None,
    ) -> LocationStore:
        """Store backed by one shared in-memory engine.

        Both adapters share the store's monitor, so they refuse commands
        after ``disconnect`` just like the Redis adapters.
        """
        engine = engine or adapters.InMemoryEngine()
        monitor = ConnectionMonitor(name="memory")
        return cls(
            adapters.InMemoryMetadataStore(engine, monitor),
            adapters.InMemoryGeoIndex(engine, monitor),
            monitor=monitor,
            chunk_size=chunk_size,
        )

    @property
    def ready(self) -> bool:
        return self.monitor.ready

    @property
    def state(self) -> ConnectionState:
        return self.monitor.state

    async def connect(self) -> ConnectionState:
        """Ping the engine and record the resulting connection state.

        An unreachable engine leaves the store DEGRADED rather than raising;
        later commands surface the engine's own errors.
        """
        if self.client is None:
            self.monitor.mark_ready()
            return self.monitor.state
        self.monitor.mark_connecting()
        try:
            await self.client.ping()
        except CONNECTION_ERRORS as exc:
            logger.warning("Location engine unreachable on connect: %s", exc)
            self.monitor.mark_degraded()
        else:
            self.monitor.mark_ready()
        return self.monitor.state

    async def disconnect(self) -> None:
        """Release the engine connection. Later calls are no-ops."""
        if self.monitor.state is ConnectionState.CLOSED:
            logger.warning("disconnect called on a closed location store")
            return
        if self.client is not None:
            await self.client.aclose()
        self.monitor.mark_closed()

    async def add_one(self, location_id: str, attrs: Mapping[str, Any]) -> int:
        """Write one location to both stores, replacing any previous entry.

        The metadata document is written first; the point is indexed only
        once that write succeeded.

        Returns:
            The geo index acknowledgment (1 for a new point, 0 for a move).

        Raises:
            InvalidLocation: If the id or coordinates are invalid.
            EngineError: If either engine call failed.
        """
        location = db_models.Location.from_attrs(location_id, attrs)
        await self.metadata.set(location.id, location.to_json())
        return await self.geo.upsert(
            location.id, location.latitude, location.longitude
        )

    def _prepare_batch(
        self,
        pairs: Iterable[tuple[str, Mapping[str, Any]]],
        result: BatchResult,
    ) -> list[db_models.Location]:
        unique: dict[str, Mapping[str, Any]] = {}
        for location_id, attrs in pairs:
            result.requested += 1
            unique[location_id] = attrs
        result.duplicates = result.requested - len(unique)
        if result.duplicates:
            logger.info(
                "Discarded %d duplicate ids from batch of %d",
                result.duplicates,
                result.requested,
            )

        locations = []
        for location_id, attrs in unique.items():
            try:
                locations.append(
                    db_models.Location.from_attrs(location_id, attrs)
                )
            except InvalidLocation as exc:
                logger.warning(
                    "Dropping %r from batch: %s", location_id, exc.reason
                )
                result.invalid[str(location_id)] = exc.reason
        return locations

    async def add_batch(
        self, pairs: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> BatchResult:
        """Write many locations to both stores.

        Invalid entries are dropped and duplicate ids collapse to the last
        entry. Each chunk is written to both sides concurrently.

        Returns:
            BatchResult, truthy when both sides acknowledged the same count.
        """
        result = BatchResult()
        locations = {loc.id: loc for loc in self._prepare_batch(pairs, result)}

        for chunk in _chunks(list(locations), self.chunk_size):
            documents = {key: locations[key].to_json() for key in chunk}
            points = {key: locations[key].point for key in chunk}
            written, indexed = await asyncio.gather(
                self.metadata.multi_set(documents),
                self.geo.upsert_batch(points),
                return_exceptions=True,
            )
            _raise_unexpected(written, indexed)

            if isinstance(written, EngineError):
                result._record_error("metadata", written)
                written = []
            if isinstance(indexed, EngineError):
                result._record_error("geo", indexed)
                indexed = []
            acked, geo_acked = set(written), set(indexed)
            result.written.extend(written)
            result.indexed += len(indexed)
            result.metadata_failed.extend(k for k in chunk if k not in acked)
            result.geo_failed.extend(k for k in chunk if k not in geo_acked)

        self._log_inconsistency("add_batch", result)
        return result

    async def get_one(self, location_id: str) -> Record:
        """Merged record for one id, empty if neither side has it."""
        raw, points = await asyncio.gather(
            self.metadata.get(location_id),
            self.geo.lookup([location_id]),
        )
        point = points.get(location_id)
        return db_models.consolidate(
            db_models.decode_document(raw),
            point.as_fields() if point else None,
        )

    async def get_batch(self, location_ids: Iterable[str]) -> list[Record]:
        """Merged records for many ids, unordered, unknown ids omitted."""
        ids = list(dict.fromkeys(location_ids))
        records: list[Record] = []
        for chunk in _chunks(ids, self.chunk_size):
            documents, points = await asyncio.gather(
                self.metadata.multi_get(chunk),
                self.geo.lookup(chunk),
            )
            for key, raw in documents.items():
                point = points.get(key)
                record = db_models.consolidate(
                    db_models.decode_document(raw),
                    point.as_fields() if point else None,
                )
                if record:
                    records.append(record)
        return records

    async def delete_one(self, location_id: str) -> int:
        """Delete one id from both stores.

        Returns:
            The geo index acknowledgment (1 if the point existed).
        """
        _, removed = await asyncio.gather(
            self.metadata.delete(location_id),
            self.geo.remove(location_id),
        )
        return removed

    async def delete_batch(self, location_ids: Iterable[str]) -> BatchResult:
        """Delete many ids from both stores without rollback.

        Returns:
            BatchResult, truthy when the metadata deletions match the number
            of points the geo index reported as removed.
        """
        result = BatchResult()
        ids = []
        for location_id in location_ids:
            result.requested += 1
            ids.append(location_id)
        ids = list(dict.fromkeys(ids))
        result.duplicates = result.requested - len(ids)

        for chunk in _chunks(ids, self.chunk_size):
            deleted, removed = await asyncio.gather(
                self.metadata.multi_delete(chunk),
                self.geo.remove_batch(chunk),
                return_exceptions=True,
            )
            _raise_unexpected(deleted, removed)

            if isinstance(deleted, EngineError):
                result._record_error("metadata", deleted)
                result.metadata_failed.extend(chunk)
            else:
                result.written.extend(deleted)
            if isinstance(removed, EngineError):
                result._record_error("geo", removed)
                result.geo_failed.extend(chunk)
            else:
                result.indexed += removed

        self._log_inconsistency("delete_batch", result)
        return result

    async def nearby(
        self, query: db_models.NearbyQuery | Mapping[str, Any]
    ) -> list[Record]:
        """Locations around a point, closest first.

        Records keep the geo index's distance order. A hit without a
        metadata document is still returned with its geo fields.
        """
        search = db_models.NearbyQuery.coerce(query)
        if search.count <= 0 or search.distance <= 0:
            return []
        hits = await self.geo.nearest(
            search.latitude,
            search.longitude,
            search.distance,
            search.count,
        )
        if not hits:
            return []
        documents = await self.metadata.multi_get([hit.id for hit in hits])
        return [
            db_models.consolidate(
                db_models.decode_document(documents.get(hit.id)),
                hit.as_fields(),
            )
            for hit in hits
        ]

    async def dump(self) -> list[Record]:
        """Every indexed location merged with its metadata."""
        return await self.get_batch(await self.geo.ids())

    async def reset(self) -> None:
        """Flush both stores entirely. Intended for tests and bootstrap."""
        await self.metadata.clear_all()
        await self.geo.clear()

    @staticmethod
    def _log_inconsistency(operation: str, result: BatchResult) -> None:
        if result.consistent:
            return
        logger.warning(
            "%s inconsistent: metadata=%d geo=%d metadata_failed=%s "
            "geo_failed=%s errors=%s",
            operation,
            len(result.written),
            result.indexed,
            result.metadata_failed,
            result.geo_failed,
            result.errors,
        )


def create_location_store(settings: config.Settings) -> LocationStore:
    """Build a Redis-backed store from settings.

    Both adapters share one client; the metadata flush in ``reset`` also
    empties the geo index because both live in the same database.
    """
    client = redis_asyncio.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
    monitor = ConnectionMonitor(name="redis")
    return LocationStore(
        adapters.RedisMetadataStore(
            client, monitor, prefix=settings.meta_key_prefix
        ),
        adapters.RedisGeoIndex(client, monitor, key=settings.geo_key),
        monitor=monitor,
        client=client,
        chunk_size=settings.batch_chunk_size,
    )
