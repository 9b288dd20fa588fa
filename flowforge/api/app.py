"""
FastAPI application factory for the FlowForge cache service.

Creates and configures the FastAPI app with its routes, middleware and
the shared cache store.  The store is owned by the app instance
(``app.state.cache_store``) rather than a module-level singleton.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from flowforge.api.auth import require_cron_secret
from flowforge.api.schemas import (
    CacheHealth,
    CleanupResponse,
    ErrorResponse,
    HealthResponse,
)
from flowforge.cache.factory import build_cache_store
from flowforge.cache.models import CacheStats, CleanupReport
from flowforge.cache.store import CacheStore
from flowforge.cache.sweeper import CacheSweeper
from flowforge.clock import Clock
from flowforge.config import Settings, get_settings
from flowforge.exceptions import (
    ConfigurationError,
    FlowForgeException,
    InvalidArgumentError,
    StorageUnavailableError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    InvalidArgumentError: 400,
    ConfigurationError: 400,
    UnauthorizedError: 401,
    StorageUnavailableError: 503,
}

_PUBLIC_MESSAGES = {
    UnauthorizedError: "Unauthorized",
    StorageUnavailableError: "Cache storage unavailable",
}


def _json_response(body: dict, status_code: int) -> Response:
    return Response(
        content=json.dumps(body),
        status_code=status_code,
        media_type="application/json",
    )


def create_app(
    store: Optional[CacheStore] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Cache store to serve; built from settings when omitted.
            A store passed in stays owned by the caller and is not closed
            on shutdown.
        settings: Settings to use instead of the global singleton.
        clock: Time source for a store built here.
        start_sweeper: Run the background sweeper during the app lifespan
            (when ``cache.sweep_interval_seconds`` is positive).

    Returns:
        Configured FastAPI instance.
    """
    settings = settings or get_settings()
    owns_store = store is None
    cache_store = store if store is not None else build_cache_store(settings, clock=clock)

    sweeper: Optional[CacheSweeper] = None
    if start_sweeper and settings.cache.sweep_interval_seconds > 0:
        sweeper = CacheSweeper(cache_store, settings.cache.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup: start the sweeper.  Shutdown: stop it and close the store."""
        if sweeper is not None:
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.stop()
            if owns_store:
                cache_store.close()

    app = FastAPI(
        title="FlowForge Cache",
        description="Cache maintenance API for FlowForge workflow generation",
        version=settings.api.version,
        lifespan=lifespan,
    )

    # -- Shared state --
    app.state.settings = settings
    app.state.cache_store = cache_store
    app.state.sweeper = sweeper
    app.state.start_time = time.time()
    app.state.version = settings.api.version

    # -- CORS --
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Request-ID middleware --
    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Response:
        """Attach a unique request ID to every request."""
        request_id = request.headers.get("X-Request-Id", uuid.uuid4().hex[:12])
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    # -- Global exception handlers --
    @app.exception_handler(FlowForgeException)
    async def flowforge_exception_handler(
        request: Request, exc: FlowForgeException
    ) -> Response:
        """Handle all FlowForgeException subclasses with consistent JSON."""
        request_id = getattr(request.state, "request_id", "unknown")
        status_code = 500
        message = "Internal server error"
        for exc_type, code in _STATUS_MAP.items():
            if isinstance(exc, exc_type):
                status_code = code
                message = _PUBLIC_MESSAGES.get(exc_type, str(exc))
                break
        if status_code >= 500:
            logger.error(
                "Request failed",
                extra={"request_id": request_id, "error": str(exc)},
                exc_info=exc,
            )
        return _json_response({"error": message, "request_id": request_id}, status_code)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> Response:
        """Catch-all handler for unhandled exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Unhandled exception",
            extra={"request_id": request_id, "error": str(exc)},
            exc_info=exc,
        )
        return _json_response(
            {"error": "Internal server error", "request_id": request_id}, 500
        )

    # -- Routes --
    @app.post(
        "/api/cache/cleanup",
        response_model=CleanupResponse,
        responses={
            401: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
        dependencies=[Depends(require_cron_secret)],
        summary="Remove expired cache entries and report statistics",
    )
    async def cleanup_cache(request: Request) -> Any:
        """Sweep expired entries, then return stats from the same scan."""
        cache: CacheStore = request.app.state.cache_store
        request_id = getattr(request.state, "request_id", "unknown")
        try:
            report: CleanupReport = await asyncio.to_thread(cache.cleanup)
        except Exception as exc:
            status_code = 503 if isinstance(exc, StorageUnavailableError) else 500
            logger.error(
                "Cache cleanup error",
                extra={"request_id": request_id, "error": str(exc)},
                exc_info=exc,
            )
            return _json_response(
                {"error": "Cleanup failed", "request_id": request_id}, status_code
            )

        logger.info(
            "Cache cleanup completed",
            extra={
                "request_id": request_id,
                "removed": report.removed_count,
                "remaining": report.remaining_count,
            },
        )
        return CleanupResponse(
            message="Cache cleanup completed",
            stats=report.stats,
            removed_count=report.removed_count,
            remaining_count=report.remaining_count,
        )

    @app.get(
        "/api/cache/stats",
        response_model=CacheStats,
        responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        dependencies=[Depends(require_cron_secret)],
        summary="Aggregate statistics over live cache entries",
    )
    async def cache_stats(request: Request, platform: Optional[str] = None) -> CacheStats:
        """Read-only statistics, optionally restricted to one platform."""
        cache: CacheStore = request.app.state.cache_store
        return await asyncio.to_thread(cache.get_stats, platform)

    @app.get("/health", response_model=HealthResponse, summary="Service health")
    async def health(request: Request) -> HealthResponse:
        """Report service health; a failing cache marks the service degraded."""
        cache: CacheStore = request.app.state.cache_store
        cache_health = CacheHealth(backend=cache.backend_name)
        status = "healthy"
        try:
            cache_health.entries = await asyncio.to_thread(cache.size)
        except StorageUnavailableError:
            cache_health.status = "unavailable"
            status = "degraded"

        sweeper_ref: Optional[CacheSweeper] = request.app.state.sweeper
        return HealthResponse(
            status=status,
            version=request.app.state.version,
            uptime_seconds=round(time.time() - request.app.state.start_time, 3),
            cache=cache_health,
            sweeper=sweeper_ref.stats() if sweeper_ref is not None else None,
        )

    return app
