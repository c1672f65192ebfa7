"""Shared fixtures: sample cities and ready-made location stores."""

from __future__ import annotations

from typing import Any

import pytest

from geolookup.core import config
from geolookup.services import location_store

SAMPLE_CITIES: list[dict[str, Any]] = [
    {
        "city": "Las Vegas",
        "state": "Nevada",
        "country_code": "US",
        "latitude": 36.1699,
        "longitude": -115.1398,
        "population": 641903,
    },
    {
        "city": "Henderson",
        "state": "Nevada",
        "country_code": "US",
        "latitude": 36.0395,
        "longitude": -114.9817,
        "population": 320189,
    },
    {
        "city": "Los Angeles",
        "state": "California",
        "country_code": "US",
        "latitude": 34.0522,
        "longitude": -118.2437,
        "population": 3898747,
    },
    {
        "city": "Phoenix",
        "state": "Arizona",
        "country_code": "US",
        "latitude": 33.4484,
        "longitude": -112.074,
        "population": 1608139,
    },
    {
        "city": "San Diego",
        "state": "California",
        "country_code": "US",
        "latitude": 32.7157,
        "longitude": -117.1611,
        "population": 1386932,
    },
    {
        "city": "Salt Lake City",
        "state": "Utah",
        "country_code": "US",
        "latitude": 40.7608,
        "longitude": -111.891,
        "population": 199723,
    },
    {
        "city": "Reno",
        "state": "Nevada",
        "country_code": "US",
        "latitude": 39.5296,
        "longitude": -119.8138,
        "population": 264165,
    },
]


@pytest.fixture
def sample_cities() -> list[dict[str, Any]]:
    """Fresh copies of the sample cities, safe to mutate."""
    return [dict(city) for city in SAMPLE_CITIES]


@pytest.fixture
def sample_pairs(
    sample_cities: list[dict[str, Any]],
) -> list[tuple[str, dict[str, Any]]]:
    """Sample cities keyed by their city name."""
    return [(city["city"], city) for city in sample_cities]


@pytest.fixture
def store() -> location_store.LocationStore:
    """Empty in-memory location store."""
    return location_store.LocationStore.in_memory()


@pytest.fixture
def settings() -> config.Settings:
    """Settings with defaults, independent of the environment cache."""
    return config.Settings()
