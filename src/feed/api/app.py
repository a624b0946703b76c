"""FastAPI read API application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from feed.api.routes import health, snapshots


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the read API application.

    Route handlers read ``app.state.service`` (IngestionService) and
    ``app.state.cache`` (TTLCache or None). The lifespan, or a test, is
    responsible for setting both.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.
    """
    app = FastAPI(
        title="Launchpad Trade Feed",
        lifespan=lifespan,
    )

    app.state.service = None
    app.state.cache = None

    app.include_router(health.router)
    app.include_router(snapshots.router, prefix="/api")

    return app
