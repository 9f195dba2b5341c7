"""
Slotguard API Server

Entry point for the FastAPI application.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from slotguard import __version__
from slotguard.access.cache import ResolutionCache
from slotguard.access.engine import AccessEngine
from slotguard.access.notifier import RedisNotifier
from slotguard.access.store import AccessStore
from slotguard.api.v1 import router as api_v1_router
from slotguard.core.config import Settings, get_settings
from slotguard.core.errors import AccessError
from slotguard.core.logging import configure_logging
from slotguard.core.metrics import MetricsCollector
from slotguard.core.redis import close_redis, get_redis

log = structlog.get_logger()


async def stop_listener(listener: asyncio.Task) -> None:
    """Cancel the invalidation listener; a crash it already died of is logged, not raised."""
    listener.cancel()
    try:
        await listener
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        log.error("access.invalidation_listener_crashed", error=repr(exc))


def build_engine(settings: Settings) -> AccessEngine:
    """Assemble the process-wide access engine from settings."""
    from slotguard.core.database import engine as db_engine

    metrics = MetricsCollector()
    store = AccessStore(db_engine, timeout=settings.store_timeout_seconds, metrics=metrics)
    cache = ResolutionCache(
        settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        metrics=metrics,
    )
    return AccessEngine(
        store,
        cache,
        metrics=metrics,
        strict_permission_keys=settings.strict_permission_keys,
    )


def create_app(
    engine: Optional[AccessEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            app.state.engine = build_engine(settings)
        access = app.state.engine

        listener: Optional[asyncio.Task] = None
        if settings.redis_url:
            notifier = RedisNotifier(
                await get_redis(), settings.invalidation_channel, metrics=access.metrics
            )
            access.notifier = notifier
            listener = asyncio.create_task(notifier.listen(access.cache))

        log.info(
            "slotguard.starting",
            version=__version__,
            cache_ttl_seconds=access.cache.ttl_seconds,
            broadcast=bool(settings.redis_url),
        )
        try:
            yield
        finally:
            log.info("slotguard.shutting_down")
            if listener is not None:
                await stop_listener(listener)
            await close_redis()

    app = FastAPI(
        title="Slotguard",
        description="Slot-based role and permission engine for multi-tenant organizations.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
        """Render engine errors as ``{"error": {code, message, status}}``."""
        if exc.status_code >= 500:
            log.warning("http.access_error", path=request.url.path, code=exc.code, error=exc.message)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.to_dict()},
            headers=headers,
        )

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/metrics", tags=["System"], response_class=PlainTextResponse)
    async def metrics(request: Request):
        """Prometheus text exposition of the engine counters."""
        access: AccessEngine = request.app.state.engine
        access.metrics.set_gauge("cache_entries", len(access.cache))
        return PlainTextResponse(access.metrics.to_prometheus())

    return app
