"""Nearby search and dump API endpoints.

This module is the HTTP adapter over the LocationStore. It validates the
query string, runs a distance-ordered nearby search and wraps the result
in the ``{"success": ..., "result": ...}`` envelope. Malformed requests get
a 400 with a generic message; internal error detail stays in the logs.

Example:
    Find the ten closest locations within 50 km:
        >>> response = client.get(
        ...     "/", params={"latitude": "36.1699", "longitude": "-115.1398"}
        ... )
        >>> response.json()
        >>> # Returns: {"success": true, "result": [{"id": "us_nvd_lsvgs",
        >>> #           "distance": 0.0, "meta": {"city": "Las Vegas"}, ...}]}

    Only cities of at least one million inhabitants within 5 km:
        >>> client.get("/", params={"latitude": "36.1699",
        ...                         "longitude": "-115.1398",
        ...                         "distance": "5000",
        ...                         "min_population": "1000000"})
"""

from __future__ import annotations

import logging
import math
from typing import Any

import fastapi
from fastapi import responses

from geolookup.core import config
from geolookup.core.errors import EngineError
from geolookup.db import models as db_models
from geolookup.services.location_store import LocationStore

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(tags=["nearby"])

USAGE_MESSAGE = (
    "[latitude, longitude] required. [count and distance] are optional"
)
UNAVAILABLE_MESSAGE = "Location store unavailable"


def get_store(request: fastapi.Request) -> LocationStore:
    """Resolve the LocationStore created by the application lifespan."""
    return request.app.state.store  # type: ignore[no-any-return]


def _is_numeric(value: str | None) -> bool:
    """True for strings that parse to a finite float."""
    if value is None:
        return False
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def _in_range(latitude: float, longitude: float) -> bool:
    """True for a centre the geo index can search from."""
    return (
        abs(latitude) <= db_models.MAX_LATITUDE
        and abs(longitude) <= db_models.MAX_LONGITUDE
    )


def _optional_int(value: str | None, default: int) -> int | None:
    """Parse an optional integer parameter, None when malformed."""
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


def _failure(status_code: int, message: str) -> responses.JSONResponse:
    return responses.JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


def _population(record: dict[str, Any]) -> float | None:
    meta = record.get("meta")
    value = meta.get("population") if isinstance(meta, dict) else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def filter_min_population(
    records: list[dict[str, Any]], min_population: float
) -> list[dict[str, Any]]:
    """Keep records whose ``meta.population`` reaches the threshold.

    Records without a usable population are dropped. Order is preserved.
    """
    kept = []
    for record in records:
        population = _population(record)
        if population is not None and population >= min_population:
            kept.append(record)
    return kept


@router.get("/", response_model=None)
async def nearby(
    latitude: str | None = None,
    longitude: str | None = None,
    distance: str | None = None,
    count: str | None = None,
    min_population: str | None = None,
    store: LocationStore = fastapi.Depends(get_store),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any] | responses.JSONResponse:
    """Return the locations closest to a coordinate, closest first.

    Args:
        latitude: Latitude of the search centre (required, numeric).
        longitude: Longitude of the search centre (required, numeric).
        distance: Search radius in metres (default from settings).
        count: Maximum number of results (default from settings).
        min_population: Drop results with a smaller ``meta.population``.
        store: Location store (injected via FastAPI Depends).
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        ``{"success": True, "result": [...]}`` or a 400/503 failure envelope.
    """
    if not (_is_numeric(latitude) and _is_numeric(longitude)):
        return _failure(400, USAGE_MESSAGE)
    centre_lat = float(latitude)  # type: ignore[arg-type]
    centre_lon = float(longitude)  # type: ignore[arg-type]
    if not _in_range(centre_lat, centre_lon):
        return _failure(400, USAGE_MESSAGE)

    radius = _optional_int(distance, settings.default_distance)
    limit = _optional_int(count, settings.default_count)
    threshold = None
    if min_population not in (None, ""):
        if not _is_numeric(min_population):
            return _failure(400, USAGE_MESSAGE)
        threshold = float(min_population)  # type: ignore[arg-type]
    if radius is None or limit is None:
        return _failure(400, USAGE_MESSAGE)

    query = db_models.NearbyQuery(
        latitude=centre_lat,
        longitude=centre_lon,
        distance=radius,
        count=limit,
    )
    try:
        result = await store.nearby(query)
    except EngineError:
        logger.exception("nearby search failed for %s", query)
        return _failure(503, UNAVAILABLE_MESSAGE)

    if threshold is not None:
        result = filter_min_population(result, threshold)
    return {"success": True, "result": result}


@router.get("/_dump", response_model=None)
async def dump(
    store: LocationStore = fastapi.Depends(get_store),  # noqa: B008
) -> dict[str, Any] | responses.JSONResponse:
    """Return every stored location. Debug only, no pagination."""
    try:
        result = await store.dump()
    except EngineError:
        logger.exception("dump failed")
        return _failure(503, UNAVAILABLE_MESSAGE)
    return {"success": True, "result": result}
