"""Storage adapters, value types and connection state.

Re-exports the adapter protocols and their implementations so services
and tests have one stable import location.

Example:
    >>> from geolookup.db import InMemoryEngine, InMemoryGeoIndex
    >>> geo = InMemoryGeoIndex(InMemoryEngine())
"""

from geolookup.db.adapters import (
    GeoIndexProtocol,
    InMemoryEngine,
    InMemoryGeoIndex,
    InMemoryMetadataStore,
    MetadataStoreProtocol,
    RedisGeoIndex,
    RedisMetadataStore,
)
from geolookup.db.connection import ConnectionMonitor, ConnectionState

__all__ = [
    "ConnectionMonitor",
    "ConnectionState",
    "GeoIndexProtocol",
    "InMemoryEngine",
    "InMemoryGeoIndex",
    "InMemoryMetadataStore",
    "MetadataStoreProtocol",
    "RedisGeoIndex",
    "RedisMetadataStore",
]
