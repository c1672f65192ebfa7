"""Helpers for bulk-loading city datasets into the location store.

City records are JSON objects with ``city``, ``state``, ``country_code``,
``latitude`` and ``longitude``; every other field ends up in the metadata
document. Ids are short but readable, e.g. ``us_nvd_lsvgs``.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable, Mapping

CITY_LIMIT = 10
STATE_LIMIT = 5

_NON_LETTERS = re.compile(r"[^a-zA-Z]")
_VOWELS = re.compile(r"[aeiou]", re.IGNORECASE)


def _consonants(value: str) -> str:
    return _VOWELS.sub("", _NON_LETTERS.sub("", value))


def _trim_repeats(city: str, limit: int) -> str:
    """Drop letters that occur elsewhere, scanning back from the end."""
    chars = list(city)
    index = len(chars) - 1
    while len(chars) > limit and index >= limit:
        if chars.count(chars[index]) > 1:
            del chars[index]
        index -= 1
    return "".join(chars)


def unique_city_id(data: Mapping[str, Any]) -> str:
    """Derive a readable id from city, state and country code.

    Long state names shrink to their first three consonants and city names
    lose vowels and punctuation before being cut to ``CITY_LIMIT``.

    Example:
        >>> unique_city_id(
        ...     {"city": "Las Vegas", "state": "Nevada", "country_code": "US"}
        ... )
        'us_nvd_lsvgs'
    """
    state = str(data.get("state") or "")
    city = str(data.get("city") or "")
    country_code = str(data.get("country_code") or "")

    if len(state) > STATE_LIMIT:
        state = _consonants(state)[:3]
    city = _consonants(city)
    if len(city) >= CITY_LIMIT:
        city = _trim_repeats(city, CITY_LIMIT)[:CITY_LIMIT]

    return f"{country_code}_{state}_{city}".lower()


def load_cities(path: pathlib.Path) -> list[dict[str, Any]]:
    """Read a JSON array of city objects."""
    with path.open(encoding="utf-8") as handle:
        cities = json.load(handle)
    if not isinstance(cities, list):
        raise ValueError(f"{path} does not contain a JSON array")
    return cities


def with_ids(
    cities: Iterable[Mapping[str, Any]],
) -> list[tuple[str, Mapping[str, Any]]]:
    """Pair every city with its derived id, ready for ``add_batch``."""
    return [(unique_city_id(city), city) for city in cities]
