"""Unit tests for the city import helpers.

Covers id derivation from city, state and country code, loading a JSON
dataset from disk, and pairing cities with ids for ``add_batch``.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from geolookup.services import importer

if TYPE_CHECKING:
    import pathlib


@pytest.mark.parametrize(
    ("city", "expected"),
    [
        (
            {"city": "Las Vegas", "state": "Nevada", "country_code": "US"},
            "us_nvd_lsvgs",
        ),
        (
            {"city": "Reno", "state": "NV", "country_code": "US"},
            "us_nv_rn",
        ),
        (
            {"city": "St. Louis", "state": "Missouri", "country_code": "US"},
            "us_mss_stls",
        ),
    ],
)
def test_unique_city_id(city: dict[str, str], expected: str) -> None:
    """Test readable id derivation."""
    assert importer.unique_city_id(city) == expected


def test_unique_city_id_long_names_are_trimmed() -> None:
    """Test that long city names are cut to the city limit."""
    city_id = importer.unique_city_id(
        {
            "city": "Rancho Cucamonga Springfield",
            "state": "California",
            "country_code": "US",
        }
    )
    country, state, city = city_id.split("_")
    assert (country, state) == ("us", "clf")
    assert len(city) == importer.CITY_LIMIT
    assert city == city.lower()


def test_trim_repeats_keeps_unique_letters() -> None:
    """Test that only letters occurring elsewhere are dropped."""
    assert importer._trim_repeats("abcdefghijkla", 10) == "abcdefghijkl"
    assert importer._trim_repeats("abcdefghijklm", 10) == "abcdefghijklm"


def test_unique_city_id_tolerates_missing_fields() -> None:
    """Test that missing fields produce empty segments."""
    assert importer.unique_city_id({"city": "Reno"}) == "__rn"


def test_load_cities(
    tmp_path: pathlib.Path, sample_cities: list[dict[str, Any]]
) -> None:
    """Test reading a JSON array from disk."""
    path = tmp_path / "cities.json"
    path.write_text(json.dumps(sample_cities), encoding="utf-8")
    assert importer.load_cities(path) == sample_cities


def test_load_cities_rejects_objects(tmp_path: pathlib.Path) -> None:
    """Test that a JSON object is not accepted as a dataset."""
    path = tmp_path / "cities.json"
    path.write_text('{"city": "Reno"}', encoding="utf-8")
    with pytest.raises(ValueError):
        importer.load_cities(path)


def test_with_ids(sample_cities: list[dict[str, Any]]) -> None:
    """Test pairing cities with derived ids."""
    pairs = importer.with_ids(sample_cities[:2])
    assert [pair[0] for pair in pairs] == ["us_nvd_lsvgs", "us_nvd_hndrsn"]
    assert pairs[0][1] is sample_cities[0]
