"""FastAPI application entry point."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transit_feeds.config import Settings, get_settings
from transit_feeds.context import ServiceContext, create_context
from transit_feeds.exceptions import (
    BatchLimitError,
    StopNotFoundError,
    TransientError,
    TransitFeedError,
)
from transit_feeds.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from transit_feeds.routers.transit import router as transit_router

logger = get_logger(__name__)

# Most specific first; Starlette resolves handlers along the exception MRO
ERROR_RESPONSES: tuple[tuple[type[TransitFeedError], int, str], ...] = (
    (StopNotFoundError, 404, "stop_not_found"),
    (BatchLimitError, 400, "batch_limit_exceeded"),
    (TransientError, 502, "upstream_error"),
    (TransitFeedError, 500, "feed_error"),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the service context on startup and release it on shutdown."""
    setup_logging()
    logger.info("Starting AC Transit Feeds API")

    context = create_context(get_settings())
    app.state.context = context

    yield

    logger.info("Shutting down AC Transit Feeds API")
    app.state.context = None
    await context.aclose()


def health_payload(settings: Settings, context: Optional[ServiceContext]) -> dict[str, Any]:
    """Status is unhealthy without a token and degraded before startup completes."""
    issues: list[str] = []
    missing_env = settings.missing_required_env()
    if missing_env:
        issues.append("Missing required environment variables: " + ", ".join(missing_env))
    if context is None:
        issues.append("Service context is not initialised")

    if missing_env:
        status = "unhealthy"
    elif context is None:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "service": settings.app_name,
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "cache": {
                "enabled": settings.enable_cache,
                "backend": context.cache.backend if context else None,
                "memory_entries": context.cache.memory_size if context else 0,
            },
            "timestamps": {
                "timezone": settings.transit_timezone,
                "malformed": context.resolver.malformed_count if context else 0,
            },
            "upstreams": {
                "gtfs_realtime": settings.gtfs_realtime_api_base_url,
                "act_realtime": settings.act_realtime_api_base_url,
            },
        },
        "issues": issues,
    }


def _register_error_handlers(app: FastAPI) -> None:
    def make_handler(status_code: int, code: str) -> Any:
        async def handler(request: Request, exc: Exception) -> JSONResponse:
            log = logger.error if status_code >= 500 else logger.warning
            log(
                "Request failed",
                error_code=code,
                error_type=type(exc).__name__,
                path=request.url.path,
                error=str(exc),
            )
            return JSONResponse(
                status_code=status_code,
                content={"error": code, "message": str(exc)},
            )

        return handler

    for exc_class, status_code, code in ERROR_RESPONSES:
        app.add_exception_handler(exc_class, make_handler(status_code, code))

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Real-time AC Transit bus positions, stop predictions and service alerts "
            "from the GTFS-Realtime and ACT RealTime feeds"
        ),
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )
    app.state.context = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id=request_id, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        clear_request_context()
        return response

    app.include_router(transit_router)

    @app.get("/health", tags=["meta"])
    async def health_check(request: Request) -> dict[str, Any]:
        return health_payload(get_settings(), request.app.state.context)

    _register_error_handlers(app)
    return app


app = create_app()
