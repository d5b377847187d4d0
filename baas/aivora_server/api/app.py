"""
FastAPI application factory for the Aivora server.

This module creates the main FastAPI app with:
- Registry lifecycle (definitions loaded and compiled once at startup)
- CORS configuration for the frontend
- Generic entity and account routes under /api
- AivoraError to HTTP status mapping
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..accounts.service import AccountService
from ..config import Settings
from ..errors import AivoraError
from ..registry import EntityRegistry, build_registry_from_directory
from ..storage.record_store import RecordStore
from . import auth, entities
from .dependencies import get_registry

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "VALIDATION_ERROR": 400,
    "ACCOUNT_EXISTS": 400,
    "AUTHENTICATION_ERROR": 401,
    "NOT_FOUND": 404,
    "DUPLICATE_RECORD": 409,
    "STORE_NOT_INITIALIZED": 503,
}


async def aivora_error_handler(request: Request, exc: AivoraError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
    errors = exc.details.get("errors")
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the store and build the registry before serving."""
        store = RecordStore(
            settings.database_path,
            wal_mode=settings.sqlite_wal_mode,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            cache_size_pages=settings.sqlite_cache_size_pages,
        )
        await store.initialize()

        registry = build_registry_from_directory(settings.definitions_dir, store)
        app.state.settings = settings
        app.state.store = store
        app.state.registry = registry
        app.state.accounts = AccountService(
            registry,
            jwt_secret=settings.jwt_secret,
            token_ttl=timedelta(days=settings.jwt_expire_days),
        )
        logger.info(
            f"Aivora ready with {len(registry)} entity kinds "
            f"({len(registry.report.errors)} skipped)"
        )

        yield

        logger.info("Aivora shutting down")

    app = FastAPI(
        title="Aivora",
        description="Project-management backend driven by declarative entity definitions.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AivoraError, aivora_error_handler)

    app.include_router(entities.router, prefix="/api")
    app.include_router(auth.router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "aivora", "version": __version__}

    @app.get("/api/schema")
    async def schema(registry: EntityRegistry = Depends(get_registry)):
        return {
            "fingerprint": registry.fingerprint,
            "kinds": registry.to_dict()["kinds"],
            "report": registry.report.to_dict(),
        }

    return app
