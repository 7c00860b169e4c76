"""SnapMeal API service.

FastAPI application providing:
- Authenticated job enqueueing (``POST /api/jobs``)
- Job record lookup for the owning user (``GET /api/jobs/{job_id}``)
- A liveness check (``GET /health``)

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from snapmeal.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from snapmeal.api.middleware.errors import (
    APIError,
    api_error_handler,
    http_error_handler,
    validation_error_handler,
)
from snapmeal.api.routers import health_router, jobs_router
from snapmeal.core.container import ServiceContainer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from snapmeal.core.config import Settings
    from snapmeal.core.container import Services

logger = logging.getLogger(__name__)

API_TITLE = "SnapMeal Jobs API"
API_DESCRIPTION = """
Asynchronous account jobs for SnapMeal.

## Endpoints

- **POST /api/jobs** - Queue an `exportData` or `deleteAccount` job (ID token required)
- **GET /api/jobs/{job_id}** - Read one of your jobs
- **GET /health** - Liveness check
"""


class _ServicesProvider:
    """Hands routes the service bundle.

    Explicit ``services`` are returned as-is (tests). Otherwise a container
    is created on first use from ``settings``, or from the environment when
    no settings were given.
    """

    def __init__(self, settings: Settings | None, services: Services | None) -> None:
        self._settings = settings
        self._services = services
        self._container: ServiceContainer | None = None

    def __call__(self) -> Services:
        if self._services is not None:
            return self._services
        if self._container is None:
            if self._settings is None:
                from snapmeal.core.settings import get_settings

                self._settings = get_settings()
            self._container = ServiceContainer(self._settings)
        return self._container.services()

    async def close(self) -> None:
        if self._container is not None:
            await self._container.close()


def create_app(
    settings: Settings | None = None,
    *,
    services: Services | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Settings used to build services. If omitted, settings are
            loaded from the environment on the first request.
        services: Prebuilt service bundle; takes precedence over settings.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        # Production
        app = create_app(get_settings())

        # Tests
        app = create_app(services=fake_services)
    """
    version = settings.app_version if settings else "0.1.0"
    provider = _ServicesProvider(settings, services)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await provider.close()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.services_provider = provider
    app.state.started_at = time.monotonic()

    _add_exception_handlers(app)
    _add_middleware(app, settings)
    _include_routers(app)

    logger.info("SnapMeal API application created (version=%s)", version)
    return app


def _add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)


def _add_middleware(app: FastAPI, settings: Settings | None) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost one.
    """
    app.add_middleware(ErrorHandlerMiddleware)

    allowed_origins = ["http://localhost:3000", "http://localhost:8000"]
    if settings and settings.is_production:
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Outermost, so error responses carry the request ID too
    app.add_middleware(RequestIDMiddleware)


def _include_routers(app: FastAPI) -> None:
    app.include_router(health_router)
    app.include_router(jobs_router, prefix="/api")
