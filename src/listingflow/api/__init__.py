"""listingflow API service.

FastAPI application providing:
- Tenant administration (bootstrap, offices, teams, users, memberships, presets)
- Job lifecycle enforcement through the transition table
- Approval, delivery and revision sub-flows
- Audit trail, reporting and CSV export endpoints

This module provides the app factory for creating configured FastAPI
instances for tests and deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from listingflow.api.middleware import (
    REQUEST_ID_HEADER,
    ErrorHandlerMiddleware,
    RequestIDMiddleware,
    register_exception_handlers,
)
from listingflow.api.routers import jobs_router, org_router, reports_router
from listingflow.core.config import Settings
from listingflow.db import StoreError, create_entity_store

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from listingflow.db import KeyValueStore

logger = logging.getLogger(__name__)

API_TITLE = "listingflow API"
API_DESCRIPTION = """
Job workflow engine for brokerage media production.

Identity is asserted through the `X-LF-User-Id`, `X-LF-Role`,
`X-LF-Brokerage-Id`, `X-LF-Office-Id` and `X-LF-Team-Id` headers.

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Release store connections on shutdown."""
    yield
    logger.info("Shutting down listingflow API")
    await app.state.store.kv.close()


def create_app(settings: Settings | None = None, kv: KeyValueStore | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. Defaults to development
            settings, which select the in-memory store unless a store URL
            is configured in the environment.
        kv: Optional explicit key/value backend, mainly for tests.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        # For testing
        from listingflow.db import MemoryKeyValueStore
        app = create_app(Settings(environment="dev"), kv=MemoryKeyValueStore())
    """
    settings = settings or Settings()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=settings.app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = create_entity_store(settings, kv)

    register_exception_handlers(app)
    _add_middleware(app, settings)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> JSONResponse:
        """Liveness check including a store round trip."""
        try:
            store_health: dict[str, Any] = await app.state.store.health_check()
        except StoreError as exc:
            logger.error("Store health check failed: %s", exc.message)
            store_health = {"healthy": False, "backend": app.state.store.kv.backend_name}

        healthy = bool(store_health.get("healthy"))
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "healthy" if healthy else "unhealthy", "store": store_health},
        )

    logger.info(
        "listingflow API application created (version=%s)",
        settings.app_version,
        extra={"config": settings.get_config_snapshot()},
    )
    return app


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware; the last one added is the outermost."""
    # Innermost: turns escaped exceptions into failure envelopes
    app.add_middleware(ErrorHandlerMiddleware)

    # Sets the request id before the error handler runs
    app.add_middleware(RequestIDMiddleware)

    allowed_origins = ["http://localhost:3000", "http://localhost:8000"]
    if settings.is_production:
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


def _include_routers(app: FastAPI) -> None:
    app.include_router(org_router, prefix="/api")
    app.include_router(jobs_router, prefix="/api")
    app.include_router(reports_router, prefix="/api")
