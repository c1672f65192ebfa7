"""Data models for locations and geo index results.

This module defines the value types that flow between the LocationStore and
its two backing stores. A ``Location`` is the validated entity written to
both sides; ``GeoPoint`` and ``GeoHit`` are what the geo index returns; and
``consolidate`` merges a metadata document with geo fields into the flat
record handed back to callers.

Example:
    Build a location from request attributes:
        >>> from geolookup.db.models import Location
        >>> loc = Location.from_attrs(
        ...     "us_nvd_lsvgs",
        ...     {"latitude": 36.1699, "longitude": -115.1398,
        ...      "city": "Las Vegas"},
        ... )
        >>> loc.meta["city"]
        'Las Vegas'
        >>> loc.to_json()
        '{"id": "us_nvd_lsvgs", "latitude": 36.1699, ...}'
"""

from __future__ import annotations

import dataclasses
import json
import math
import types
from collections.abc import Mapping
from typing import Any, NamedTuple

from geolookup.core.errors import InvalidLocation

COORDINATE_FIELDS = ("latitude", "longitude")
# Latitudes the geo index can encode (Web Mercator limit).
MAX_LATITUDE = 85.05112878
MAX_LONGITUDE = 180.0


def _coordinate(
    location_id: object, name: str, value: object, limit: float
) -> float:
    """Coerce a coordinate to float, rejecting missing, zero or bad values."""
    if value is None or isinstance(value, bool):
        raise InvalidLocation(location_id, f"{name} is required")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidLocation(location_id, f"{name} is not numeric") from None
    if not math.isfinite(number):
        raise InvalidLocation(location_id, f"{name} must be finite")
    # Zero is rejected along with missing values; see DESIGN.md.
    if number == 0:
        raise InvalidLocation(location_id, f"{name} must be non-zero")
    if abs(number) > limit:
        raise InvalidLocation(location_id, f"{name} out of range")
    return number


@dataclasses.dataclass(frozen=True)
class Location:
    """A named point plus arbitrary metadata, identical in both stores.

    Instances are immutable; writing a Location with an existing id fully
    replaces the previous entry on both sides.

    Attributes:
        id: Unique, non-empty identifier.
        latitude: Latitude in degrees, non-zero.
        longitude: Longitude in degrees, non-zero.
        meta: Read-only view of the metadata document.
    """

    id: str
    latitude: float
    longitude: float
    meta: Mapping[str, Any] = dataclasses.field(
        default_factory=dict, hash=False
    )

    def __post_init__(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise InvalidLocation(self.id, "id must be a non-empty string")
        latitude = _coordinate(
            self.id, "latitude", self.latitude, MAX_LATITUDE
        )
        longitude = _coordinate(
            self.id, "longitude", self.longitude, MAX_LONGITUDE
        )
        object.__setattr__(self, "latitude", latitude)
        object.__setattr__(self, "longitude", longitude)
        object.__setattr__(
            self, "meta", types.MappingProxyType(dict(self.meta or {}))
        )

    @classmethod
    def from_attrs(
        cls, location_id: str, attrs: Mapping[str, Any]
    ) -> Location:
        """Build a Location from a flat attribute mapping.

        ``latitude`` and ``longitude`` are taken out; an explicit ``meta``
        mapping is used as the base document and every remaining key is
        merged on top of it.

        Raises:
            InvalidLocation: If attrs is not a mapping or any field is invalid.
        """
        if not isinstance(attrs, Mapping):
            raise InvalidLocation(location_id, "attributes must be a mapping")
        rest = {k: v for k, v in attrs.items() if k not in COORDINATE_FIELDS}
        base = rest.pop("meta", None)
        meta = dict(base) if isinstance(base, Mapping) else {}
        meta.update(rest)
        return cls(
            location_id,
            attrs.get("latitude"),  # type: ignore[arg-type]
            attrs.get("longitude"),  # type: ignore[arg-type]
            meta,
        )

    def to_document(self) -> dict[str, Any]:
        """Canonical document layout: id, latitude, longitude, meta."""
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "meta": dict(self.meta),
        }

    def to_json(self) -> str:
        """Serialized payload written to the metadata store."""
        return json.dumps(self.to_document())

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


class GeoPoint(NamedTuple):
    """Coordinates of one indexed point as stored by the geo index."""

    latitude: float
    longitude: float

    def as_fields(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclasses.dataclass(frozen=True)
class GeoHit:
    """One nearest-neighbour result, distance in metres."""

    id: str
    distance: float
    latitude: float
    longitude: float

    def as_fields(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "distance": self.distance,
        }


@dataclasses.dataclass(frozen=True)
class NearbyQuery:
    """Parameters of a nearest-neighbour search.

    Attributes:
        latitude: Latitude of the search centre.
        longitude: Longitude of the search centre.
        distance: Search radius in metres.
        count: Maximum number of results.
    """

    latitude: float
    longitude: float
    distance: float = 50000
    count: int = 10

    @classmethod
    def coerce(cls, query: NearbyQuery | Mapping[str, Any]) -> NearbyQuery:
        """Accept either a NearbyQuery or a mapping with the same keys."""
        if isinstance(query, NearbyQuery):
            return query
        fields = {f.name for f in dataclasses.fields(cls)}
        return cls(
            **{k: v for k, v in query.items() if k in fields and v is not None}
        )


def decode_document(raw: str | bytes | None) -> dict[str, Any]:
    """Parse a stored document, treating a missing value as empty."""
    if raw is None:
        return {}
    document = json.loads(raw)
    return document if isinstance(document, dict) else {}


def consolidate(
    document: Mapping[str, Any] | None,
    geo_fields: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Shallow-merge a metadata document with geo fields (geo wins)."""
    merged: dict[str, Any] = dict(document or {})
    merged.update(geo_fields or {})
    return merged
