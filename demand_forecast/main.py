"""FastAPI application entrypoint."""

import logging
from collections.abc import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from demand_forecast.api.router import api_router
from demand_forecast.core.config import get_settings
from demand_forecast.db.session import open_session
from demand_forecast.repositories.forecast_repository import SqlIdentifierLookup
from demand_forecast.services.identifier_resolution import IdentifierResolutionService


def create_app(session_factory: Callable[[], Session] | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    ``session_factory`` backs the skill and staff identifier caches; it
    defaults to sessions on the configured database.
    """

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    factory = session_factory or open_session
    app.state.skill_resolver = IdentifierResolutionService(
        SqlIdentifierLookup(factory, kind="skill"),
        ttl_seconds=settings.identifier_cache_ttl_seconds,
        max_concurrency=settings.identifier_lookup_concurrency,
        kind="skill",
    )
    app.state.staff_resolver = IdentifierResolutionService(
        SqlIdentifierLookup(factory, kind="staff"),
        ttl_seconds=settings.identifier_cache_ttl_seconds,
        max_concurrency=settings.identifier_lookup_concurrency,
        kind="staff",
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", tags=["system"])
    def root() -> dict[str, str]:
        return {"service": settings.app_name, "status": "running"}

    return app


app = create_app()
