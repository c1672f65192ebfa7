"""Capability adapters for the metadata store and the geo index.

The LocationStore only talks to these two protocols. Two implementations
of each are provided:

- In-memory adapters sharing one ``InMemoryEngine`` keyspace, used by the
  tests and for local development. Flushing the engine clears both sides,
  like a Redis FLUSHDB does.
- Redis adapters sharing one ``redis.asyncio.Redis`` client. Documents are
  plain string keys ``<prefix><id>``; points are members of one geo sorted
  set searched with GEOSEARCH.

Example:
    Wire both Redis adapters to one client:
        >>> from redis import asyncio as redis_asyncio
        >>> client = redis_asyncio.Redis.from_url("redis://localhost:6379/0")
        >>> monitor = ConnectionMonitor()
        >>> metadata = RedisMetadataStore(client, monitor, prefix="meta_")
        >>> geo = RedisGeoIndex(client, monitor, key="geo:locations")
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Protocol

from geolookup.core.errors import EngineUnavailable
from geolookup.db import models as db_models
from geolookup.db.connection import ConnectionMonitor, ConnectionState

if TYPE_CHECKING:
    from redis import asyncio as redis_asyncio

EARTH_RADIUS_M = 6372797.560856


class MetadataStoreProtocol(Protocol):
    """Key to document store.

    ``multi_set`` returns the ids whose write was acknowledged and
    ``multi_delete`` the ids that existed and were removed.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, document: str) -> bool: ...

    async def delete(self, key: str) -> int: ...

    async def multi_get(
        self, keys: Sequence[str]
    ) -> dict[str, str | None]: ...

    async def multi_set(self, pairs: Mapping[str, str]) -> list[str]: ...

    async def multi_delete(self, keys: Sequence[str]) -> list[str]: ...

    async def clear_all(self) -> None: ...


class GeoIndexProtocol(Protocol):
    """Point index supporting distance-ordered radius search."""

    async def upsert(
        self, key: str, latitude: float, longitude: float
    ) -> int: ...

    async def upsert_batch(
        self, points: Mapping[str, db_models.GeoPoint]
    ) -> list[str]: ...

    async def remove(self, key: str) -> int: ...

    async def remove_batch(self, keys: Sequence[str]) -> int: ...

    async def lookup(
        self, keys: Sequence[str]
    ) -> dict[str, db_models.GeoPoint]: ...

    async def nearest(
        self,
        latitude: float,
        longitude: float,
        radius: float,
        limit: int,
    ) -> list[db_models.GeoHit]: ...

    async def ids(self) -> list[str]: ...

    async def clear(self) -> None: ...


def haversine(
    latitude1: float, longitude1: float, latitude2: float, longitude2: float
) -> float:
    """Great-circle distance in metres on Redis' earth sphere."""
    phi1, phi2 = math.radians(latitude1), math.radians(latitude2)
    dphi = phi2 - phi1
    dlambda = math.radians(longitude2 - longitude1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


class InMemoryEngine:
    """Shared keyspace behind the in-memory adapters.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self.documents: dict[str, str] = {}
        self.points: dict[str, db_models.GeoPoint] = {}

    def flush(self) -> None:
        self.documents.clear()
        self.points.clear()


def _refuse_when_closed(
    monitor: ConnectionMonitor | None, operation: str, ids: Iterable[str]
) -> None:
    if monitor is not None and monitor.state is ConnectionState.CLOSED:
        raise EngineUnavailable(operation, ids)


class InMemoryMetadataStore(MetadataStoreProtocol):
    """Dictionary-backed metadata store for tests and local development.

    With a monitor attached, commands fail with ``EngineUnavailable`` once
    the monitor is closed, like the Redis adapter does.
    """

    def __init__(
        self,
        engine: InMemoryEngine | None = None,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        self.engine = engine or InMemoryEngine()
        self.monitor = monitor

    async def get(self, key: str) -> str | None:
        _refuse_when_closed(self.monitor, "metadata.get", [key])
        return self.engine.documents.get(key)

    async def set(self, key: str, document: str) -> bool:
        _refuse_when_closed(self.monitor, "metadata.set", [key])
        self.engine.documents[key] = document
        return True

    async def delete(self, key: str) -> int:
        _refuse_when_closed(self.monitor, "metadata.delete", [key])
        return 1 if self.engine.documents.pop(key, None) is not None else 0

    async def multi_get(
        self, keys: Sequence[str]
    ) -> dict[str, str | None]:
        _refuse_when_closed(self.monitor, "metadata.multi_get", keys)
        return {key: self.engine.documents.get(key) for key in keys}

    async def multi_set(self, pairs: Mapping[str, str]) -> list[str]:
        _refuse_when_closed(self.monitor, "metadata.multi_set", pairs)
        self.engine.documents.update(pairs)
        return list(pairs)

    async def multi_delete(self, keys: Sequence[str]) -> list[str]:
        _refuse_when_closed(self.monitor, "metadata.multi_delete", keys)
        return [
            key
            for key in keys
            if self.engine.documents.pop(key, None) is not None
        ]

    async def clear_all(self) -> None:
        _refuse_when_closed(self.monitor, "metadata.clear_all", ())
        self.engine.flush()


class InMemoryGeoIndex(GeoIndexProtocol):
    """Linear-scan geo index with haversine distances."""

    def __init__(
        self,
        engine: InMemoryEngine | None = None,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        self.engine = engine or InMemoryEngine()
        self.monitor = monitor

    async def upsert(
        self, key: str, latitude: float, longitude: float
    ) -> int:
        _refuse_when_closed(self.monitor, "geo.upsert", [key])
        added = key not in self.engine.points
        self.engine.points[key] = db_models.GeoPoint(latitude, longitude)
        return int(added)

    async def upsert_batch(
        self, points: Mapping[str, db_models.GeoPoint]
    ) -> list[str]:
        _refuse_when_closed(self.monitor, "geo.upsert_batch", points)
        self.engine.points.update(points)
        return list(points)

    async def remove(self, key: str) -> int:
        _refuse_when_closed(self.monitor, "geo.remove", [key])
        return 1 if self.engine.points.pop(key, None) is not None else 0

    async def remove_batch(self, keys: Sequence[str]) -> int:
        _refuse_when_closed(self.monitor, "geo.remove_batch", keys)
        return sum(
            self.engine.points.pop(key, None) is not None
            for key in dict.fromkeys(keys)
        )

    async def lookup(
        self, keys: Sequence[str]
    ) -> dict[str, db_models.GeoPoint]:
        _refuse_when_closed(self.monitor, "geo.lookup", keys)
        return {
            key: self.engine.points[key]
            for key in keys
            if key in self.engine.points
        }

    async def nearest(
        self,
        latitude: float,
        longitude: float,
        radius: float,
        limit: int,
    ) -> list[db_models.GeoHit]:
        _refuse_when_closed(self.monitor, "geo.nearest", ())
        hits = []
        for key, point in self.engine.points.items():
            distance = haversine(
                latitude, longitude, point.latitude, point.longitude
            )
            if distance <= radius:
                hits.append(
                    db_models.GeoHit(
                        key, distance, point.latitude, point.longitude
                    )
                )
        hits.sort(key=lambda hit: hit.distance)
        return hits[:limit]

    async def ids(self) -> list[str]:
        _refuse_when_closed(self.monitor, "geo.ids", ())
        return list(self.engine.points)

    async def clear(self) -> None:
        _refuse_when_closed(self.monitor, "geo.clear", ())
        self.engine.points.clear()


def _text(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisMetadataStore(MetadataStoreProtocol):
    """Metadata documents stored as string keys ``<prefix><id>``.

    The prefix is applied inside the adapter, so callers always pass bare ids.
    """

    def __init__(
        self,
        client: redis_asyncio.Redis,
        monitor: ConnectionMonitor,
        prefix: str = "meta_",
    ) -> None:
        self.client = client
        self.monitor = monitor
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> str | None:
        async with self.monitor.track("metadata.get", [key]):
            raw = await self.client.get(self._key(key))
        return None if raw is None else _text(raw)

    async def set(self, key: str, document: str) -> bool:
        async with self.monitor.track("metadata.set", [key]):
            return bool(await self.client.set(self._key(key), document))

    async def delete(self, key: str) -> int:
        async with self.monitor.track("metadata.delete", [key]):
            return int(await self.client.delete(self._key(key)))

    async def multi_get(self, keys: Sequence[str]) -> dict[str, str | None]:
        if not keys:
            return {}
        async with self.monitor.track("metadata.multi_get", keys):
            values = await self.client.mget([self._key(k) for k in keys])
        return {
            key: None if raw is None else _text(raw)
            for key, raw in zip(keys, values, strict=True)
        }

    async def multi_set(self, pairs: Mapping[str, str]) -> list[str]:
        if not pairs:
            return []
        async with self.monitor.track("metadata.multi_set", list(pairs)):
            async with self.client.pipeline(transaction=True) as pipe:
                for key, document in pairs.items():
                    pipe.set(self._key(key), document)
                replies = await pipe.execute()
        return [
            key
            for key, reply in zip(pairs, replies, strict=True)
            if reply is True
        ]

    async def multi_delete(self, keys: Sequence[str]) -> list[str]:
        if not keys:
            return []
        async with self.monitor.track("metadata.multi_delete", keys):
            async with self.client.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.delete(self._key(key))
                replies = await pipe.execute()
        return [
            key for key, reply in zip(keys, replies, strict=True) if reply
        ]

    async def clear_all(self) -> None:
        # FLUSHDB also drops the geo sorted set living in the same database.
        async with self.monitor.track("metadata.clear_all"):
            await self.client.flushdb()


class RedisGeoIndex(GeoIndexProtocol):
    """Points stored as members of one Redis geo sorted set."""

    def __init__(
        self,
        client: redis_asyncio.Redis,
        monitor: ConnectionMonitor,
        key: str = "geo:locations",
    ) -> None:
        self.client = client
        self.monitor = monitor
        self.key = key

    async def upsert(self, key: str, latitude: float, longitude: float) -> int:
        async with self.monitor.track("geo.upsert", [key]):
            return int(
                await self.client.geoadd(self.key, (longitude, latitude, key))
            )

    async def upsert_batch(
        self, points: Mapping[str, db_models.GeoPoint]
    ) -> list[str]:
        if not points:
            return []
        values: list[float | str] = []
        for key, point in points.items():
            values.extend((point.longitude, point.latitude, key))
        async with self.monitor.track("geo.upsert_batch", list(points)):
            # GEOADD counts only new members, so success acknowledges all.
            await self.client.geoadd(self.key, values)
        return list(points)

    async def remove(self, key: str) -> int:
        async with self.monitor.track("geo.remove", [key]):
            return int(await self.client.zrem(self.key, key))

    async def remove_batch(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        async with self.monitor.track("geo.remove_batch", keys):
            return int(await self.client.zrem(self.key, *keys))

    async def lookup(
        self, keys: Sequence[str]
    ) -> dict[str, db_models.GeoPoint]:
        if not keys:
            return {}
        async with self.monitor.track("geo.lookup", keys):
            positions = await self.client.geopos(self.key, *keys)
        return {
            key: db_models.GeoPoint(float(pos[1]), float(pos[0]))
            for key, pos in zip(keys, positions, strict=True)
            if pos is not None
        }

    async def nearest(
        self,
        latitude: float,
        longitude: float,
        radius: float,
        limit: int,
    ) -> list[db_models.GeoHit]:
        async with self.monitor.track("geo.nearest"):
            rows = await self.client.geosearch(
                self.key,
                longitude=longitude,
                latitude=latitude,
                radius=radius,
                unit="m",
                sort="ASC",
                count=limit,
                withdist=True,
                withcoord=True,
            )
        return [
            db_models.GeoHit(
                _text(member),
                float(distance),
                float(coord[1]),
                float(coord[0]),
            )
            for member, distance, coord in rows
        ]

    async def ids(self) -> list[str]:
        async with self.monitor.track("geo.ids"):
            members = await self.client.zrange(self.key, 0, -1)
        return [_text(member) for member in members]

    async def clear(self) -> None:
        async with self.monitor.track("geo.clear"):
            await self.client.delete(self.key)
