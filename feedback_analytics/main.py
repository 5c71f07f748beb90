"""
FastAPI application factory with middleware, CORS, and request tracing.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedback_analytics import __version__
from feedback_analytics.cache import AnalyticsCache
from feedback_analytics.config import Settings, get_settings
from feedback_analytics.engine.analytics_service import AnalyticsService
from feedback_analytics.engine.refresh_orchestrator import RefreshOrchestrator
from feedback_analytics.routers import analytics
from feedback_analytics.storage import get_storage
from feedback_analytics.utils.logging import configure_logging, get_logger

# Configure logging at module level
configure_logging()
logger = get_logger(__name__)


def build_cache(settings: Settings) -> AnalyticsCache:
    """Analytics cache from settings; memory-only when Redis is disabled."""
    return AnalyticsCache(
        redis_url=settings.redis_url if settings.cache_enabled else None,
        default_ttl=settings.cache_default_ttl_seconds,
        analytics_ttl=settings.cache_analytics_ttl_seconds,
        max_memory_items=settings.cache_max_memory_items,
        max_connections=settings.redis_max_connections,
    )


def build_analytics_service(settings: Settings) -> AnalyticsService:
    """Wire storage, cache and engine into the service used by the routers."""
    storage = get_storage()
    cache = build_cache(settings)
    cache.connect()

    orchestrator = RefreshOrchestrator(
        storage, cache=cache, window_days=settings.refresh_window_days
    )
    return AnalyticsService(
        storage,
        cache,
        orchestrator=orchestrator,
        default_granularities=settings.default_granularities,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds the analytics service on startup and releases the cache on shutdown.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        dev_mode=settings.dev_mode,
        db_path=settings.db_path,
    )

    db_dir = os.path.dirname(settings.db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    app.state.analytics_service = build_analytics_service(settings)
    logger.info("analytics_service_ready", cache=app.state.analytics_service.cache.backend)

    yield

    app.state.analytics_service.cache.close()
    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Feedback Analytics API",
        description="Survey analytics ETL - KPI, trend and category breakdown rollups",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Request tracing middleware
    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID and timing to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind request ID to structlog context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )

            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint for load balancers and monitoring."""
        service = getattr(request.app.state, "analytics_service", None)
        cache_health = service.cache.health_check() if service else {"status": "not_initialized"}
        return {
            "status": "healthy",
            "version": app.version,
            "cache": cache_health,
        }

    app.include_router(analytics.router, prefix="/api/v1/analytics", tags=["Analytics"])

    logger.info("application_configured", routers_count=1)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "feedback_analytics.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
