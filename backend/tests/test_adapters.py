"""Tests for the metadata store and geo index adapters.

The in-memory adapters are exercised directly. The Redis adapters run
against fakeredis so no server is required; they check the key layout
(prefixed metadata keys, one geo sorted set), pipelined batches and
distance-ordered GEOSEARCH results.

See Also:
    - backend/geolookup/db/adapters.py for the implementations.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import fakeredis
import pytest
import pytest_asyncio

from geolookup.db import adapters
from geolookup.db import models as db_models
from geolookup.db.connection import ConnectionMonitor

LAS_VEGAS = db_models.GeoPoint(36.1699, -115.1398)
HENDERSON = db_models.GeoPoint(36.0395, -114.9817)
RENO = db_models.GeoPoint(39.5296, -119.8138)


def test_haversine_known_distance() -> None:
    """Test haversine against the Las Vegas to Henderson distance."""
    distance = adapters.haversine(*LAS_VEGAS, *HENDERSON)
    assert 19000 < distance < 22000
    assert adapters.haversine(*LAS_VEGAS, *LAS_VEGAS) == 0


@pytest.mark.asyncio
async def test_in_memory_metadata_crud() -> None:
    """Test single and batched operations of the in-memory store."""
    store = adapters.InMemoryMetadataStore()
    assert await store.set("a", "{}") is True
    assert await store.get("a") == "{}"
    assert await store.multi_set({"b": "1", "c": "2"}) == ["b", "c"]
    assert await store.multi_get(["a", "c", "x"]) == {
        "a": "{}",
        "c": "2",
        "x": None,
    }
    assert await store.delete("a") == 1
    assert await store.delete("a") == 0
    assert await store.multi_delete(["b", "x"]) == ["b"]


@pytest.mark.asyncio
async def test_in_memory_engine_shared_flush() -> None:
    """Test that clearing metadata flushes the shared geo keyspace."""
    engine = adapters.InMemoryEngine()
    metadata = adapters.InMemoryMetadataStore(engine)
    geo = adapters.InMemoryGeoIndex(engine)
    await metadata.set("lv", "{}")
    await geo.upsert("lv", *LAS_VEGAS)
    await metadata.clear_all()
    assert await metadata.get("lv") is None
    assert await geo.ids() == []


@pytest.mark.asyncio
async def test_in_memory_geo_nearest() -> None:
    """Test radius filtering, ordering and the result cap."""
    geo = adapters.InMemoryGeoIndex()
    assert await geo.upsert_batch(
        {"reno": RENO, "henderson": HENDERSON, "lv": LAS_VEGAS}
    ) == ["reno", "henderson", "lv"]
    hits = await geo.nearest(*LAS_VEGAS, radius=50000, limit=10)
    assert [hit.id for hit in hits] == ["lv", "henderson"]
    assert hits[0].distance == 0
    capped = await geo.nearest(*LAS_VEGAS, radius=1_000_000, limit=1)
    assert [hit.id for hit in capped] == ["lv"]


@pytest.mark.asyncio
async def test_in_memory_geo_upsert_and_remove() -> None:
    """Test upsert acknowledgments and batch removal counts."""
    geo = adapters.InMemoryGeoIndex()
    assert await geo.upsert("lv", *LAS_VEGAS) == 1
    assert await geo.upsert("lv", *HENDERSON) == 0
    assert await geo.lookup(["lv", "x"]) == {"lv": HENDERSON}
    await geo.upsert("reno", *RENO)
    assert await geo.remove_batch(["lv", "lv", "x"]) == 1
    assert await geo.remove("reno") == 1
    assert await geo.remove("reno") == 0


@pytest_asyncio.fixture
async def redis_client() -> AsyncIterator[fakeredis.FakeAsyncRedis]:
    client = fakeredis.FakeAsyncRedis()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.mark.asyncio
async def test_redis_metadata_prefixed_keys(
    redis_client: fakeredis.FakeAsyncRedis,
) -> None:
    """Test that documents live under the configured key prefix."""
    store = adapters.RedisMetadataStore(
        redis_client, ConnectionMonitor(), prefix="meta_"
    )
    assert await store.set("lv", '{"id": "lv"}') is True
    assert await redis_client.get("meta_lv") == b'{"id": "lv"}'
    assert await store.get("lv") == '{"id": "lv"}'
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_redis_metadata_batches(
    redis_client: fakeredis.FakeAsyncRedis,
) -> None:
    """Test pipelined multi_set, multi_get and multi_delete."""
    monitor = ConnectionMonitor()
    store = adapters.RedisMetadataStore(redis_client, monitor)
    assert await store.multi_set({"a": "1", "b": "2"}) == ["a", "b"]
    assert await store.multi_get(["a", "b", "c"]) == {
        "a": "1",
        "b": "2",
        "c": None,
    }
    assert await store.multi_delete(["a", "c"]) == ["a"]
    assert await store.delete("b") == 1
    assert await store.multi_get([]) == {}
    assert monitor.ready


@pytest.mark.asyncio
async def test_redis_geo_index(
    redis_client: fakeredis.FakeAsyncRedis,
) -> None:
    """Test GEOADD, GEOPOS, GEOSEARCH and ZREM through the adapter."""
    geo = adapters.RedisGeoIndex(
        redis_client, ConnectionMonitor(), key="geo:test"
    )
    assert await geo.upsert("lv", *LAS_VEGAS) == 1
    assert await geo.upsert_batch({"henderson": HENDERSON, "reno": RENO}) == [
        "henderson",
        "reno",
    ]
    assert await redis_client.zcard("geo:test") == 3

    points = await geo.lookup(["lv", "missing"])
    assert list(points) == ["lv"]
    assert points["lv"].latitude == pytest.approx(LAS_VEGAS.latitude, abs=1e-4)
    assert points["lv"].longitude == pytest.approx(
        LAS_VEGAS.longitude, abs=1e-4
    )

    hits = await geo.nearest(*LAS_VEGAS, radius=50000, limit=10)
    assert [hit.id for hit in hits] == ["lv", "henderson"]
    assert hits[0].distance <= hits[1].distance

    assert sorted(await geo.ids()) == ["henderson", "lv", "reno"]
    assert await geo.remove_batch(["lv", "missing"]) == 1
    assert await geo.remove("reno") == 1
    await geo.clear()
    assert await redis_client.exists("geo:test") == 0


@pytest.mark.asyncio
async def test_redis_clear_all_flushes_geo(
    redis_client: fakeredis.FakeAsyncRedis,
) -> None:
    """Test that flushing metadata also drops the geo sorted set."""
    monitor = ConnectionMonitor()
    metadata = adapters.RedisMetadataStore(redis_client, monitor)
    geo = adapters.RedisGeoIndex(redis_client, monitor)
    await metadata.set("lv", "{}")
    await geo.upsert("lv", *LAS_VEGAS)
    await metadata.clear_all()
    assert await geo.ids() == []
    assert await metadata.get("lv") is None
