"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
CORS middleware, includes the nearby search router, exposes a health
check endpoint, and manages the LocationStore connection over the
application lifespan.

Example:
    The application can be run with uvicorn:
        $ uvicorn geolookup.main:app --port 3000

    Or imported and used programmatically:
        >>> from geolookup.main import app
        >>> # Use app in ASGI server
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import fastapi
from fastapi.middleware import cors

from geolookup.api import nearby
from geolookup.core import config
from geolookup.services import location_store

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Connect the store on startup and release it on shutdown.

    A store already placed on ``app.state`` (tests, embedding) is used
    as is instead of building a Redis-backed one.
    """
    store = getattr(app.state, "store", None)
    if store is None:
        store = location_store.create_location_store(config.get_settings())
        app.state.store = store
    await store.connect()
    try:
        yield
    finally:
        await store.disconnect()


def create_app(
    store: location_store.LocationStore | None = None,
) -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Optional pre-built store; a Redis-backed one is created from
            settings on startup when omitted.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    config.configure_logging(settings.log_level)
    app = fastapi.FastAPI(
        title="Geo Lookup", version="0.1.0", lifespan=lifespan
    )
    if store is not None:
        app.state.store = store

    app.include_router(nearby.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint reporting the store connection state."""
        current = getattr(app.state, "store", None)
        state = current.state if current is not None else "uninitialized"
        return {"status": "ok", "store": str(state)}

    return app


app = create_app()
