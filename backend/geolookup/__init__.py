"""Geospatial lookup service over a set of named points.

Each location is stored twice, as a metadata document and as a point in a
geo index, both keyed by the location id. The LocationStore keeps the two
in step and answers nearest-neighbour queries with the merged records.

- Redis backs both sides in production (plain keys plus a geo sorted set)
- In-memory adapters back the tests and local development
- A FastAPI adapter serves nearby searches; a Typer CLI bulk-loads cities
"""
