"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cosmic_relay import __version__
from cosmic_relay.api.dependencies import set_relay_service
from cosmic_relay.api.middleware.timeout import TimeoutMiddleware
from cosmic_relay.api.routes import health, preview, sources, ws_sources
from cosmic_relay.config.settings import get_settings
from cosmic_relay.observability.logging import bind_context, clear_context
from cosmic_relay.services.relay_service import RelayService

logger = structlog.get_logger(__name__)


def _make_lifespan(service: RelayService | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the relay core with the server and stop it on shutdown."""
        logger.info("Relay API starting up")
        relay = service or RelayService()
        # A ConfigError here aborts startup
        await relay.start()
        app.state.relay_service = relay
        set_relay_service(relay)

        yield

        logger.info("Relay API shutting down")
        set_relay_service(None)
        await relay.stop()

    return lifespan


def create_app(service: RelayService | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Relay service to serve (or build one from settings at startup)

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    openapi_tags = [
        {"name": "health", "description": "Service health checks"},
        {"name": "sources", "description": "Source catalog, latest values and history"},
        {"name": "preview", "description": "Selector preview for candidate definitions"},
        {"name": "websocket", "description": "Live source updates"},
    ]

    app = FastAPI(
        title="Cosmic Relay API",
        description="""
Scheduled polling of configured sources with live delivery.

## Retention

Every read is clamped to the retention window; older data is never served.

## Live updates

Connect to `/ws/sources/{id}` for `connected`, `latest`, `update` and `error` messages.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=_make_lifespan(service),
        openapi_tags=openapi_tags,
    )

    # CORS origins from CORS_ORIGINS env var, comma-separated
    cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Added before the logging middleware so the timeout wraps the whole request
    if settings.request_timeout_seconds > 0:
        app.add_middleware(
            TimeoutMiddleware,
            timeout_seconds=settings.request_timeout_seconds,
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        # Correlation ID: use incoming header or generate a new one
        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid.uuid4())
        )
        bind_context(request_id=request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            clear_context()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(sources.router, tags=["sources"])
    app.include_router(preview.router, tags=["preview"])
    app.include_router(ws_sources.router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "Cosmic Relay API",
            "version": __version__,
            "docs": "/docs",
        }

    return app
