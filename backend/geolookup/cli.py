"""Typer CLI for bulk-loading locations.

Example:
    Replace the store contents with a city dataset:
        $ geolookup import-cities data/BigCities.json

    Append without flushing first:
        $ REDIS_HOST=redis geolookup import-cities cities.json --no-reset
"""

from __future__ import annotations

import asyncio
import logging
import pathlib

import typer

from geolookup.core import config
from geolookup.services import importer, location_store

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Geo lookup location store tools.", no_args_is_help=True
)


async def _import(
    store: location_store.LocationStore,
    cities: list[dict[str, object]],
    reset: bool,
) -> location_store.BatchResult:
    await store.connect()
    try:
        if reset:
            await store.reset()
        return await store.add_batch(importer.with_ids(cities))
    finally:
        await store.disconnect()


def _build_store() -> location_store.LocationStore:
    return location_store.create_location_store(config.get_settings())


@app.command("import-cities")
def import_cities(
    path: pathlib.Path = typer.Argument(  # noqa: B008
        ..., exists=True, dir_okay=False, readable=True,
        help="JSON array of city objects.",
    ),
    reset: bool = typer.Option(
        True, "--reset/--no-reset", help="Flush the store before importing."
    ),
) -> None:
    """Import a city dataset with ids derived from country, state and city."""
    settings = config.get_settings()
    config.configure_logging(settings.log_level)
    cities = importer.load_cities(path)
    logger.info("Importing %d cities from %s", len(cities), path)

    result = asyncio.run(_import(_build_store(), cities, reset))
    if result:
        typer.echo("Import success!")
        return
    typer.echo("Import inconsistency!", err=True)
    raise typer.Exit(code=1)


@app.callback()
def main() -> None:
    """Geo lookup location store tools."""


if __name__ == "__main__":
    app()
