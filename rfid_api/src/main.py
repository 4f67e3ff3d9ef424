"""
FastAPI application entry point for the RFID Animal Lookup API.

This module provides the FastAPI application with:
- RFID lookup and animal listing endpoints
- Live feed WebSocket and Telegram webhook routes
- Health, readiness and Prometheus metrics endpoints
- Structured request logging with correlation ids
- Error envelope mapping for the service's exception taxonomy
- Database pool and bot lifecycle tied to application startup/shutdown
"""

import structlog
import uvicorn
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Any, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from rfid_api.src.config import get_settings, Settings
from rfid_api.src.dependencies import ServiceContainer
from rfid_api.src.exceptions import RfidApiError, StorageError, error_response
from rfid_api.src.middleware import RequestLoggingMiddleware
from rfid_api.src.routers import animals, live_feed, telegram
from shared.logging import configure_logging
from shared.metrics import ScanMetrics, get_metrics_handler

# Initialize logger
logger = structlog.get_logger(__name__)


def _describe_validation_errors(exc: RequestValidationError) -> str:
    """Flatten FastAPI validation errors into one readable message."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query"))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request"


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        container: Prebuilt services; when given, the lifespan uses it
            instead of connecting to PostgreSQL and Telegram

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = container.settings if container is not None else get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.log_format == "json",
        service_name=settings.app_name,
        environment=settings.environment
    )

    metrics = container.metrics if container is not None else ScanMetrics()

    # ========================================================================
    # Lifespan Management
    # ========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager for startup and shutdown events.

        Handles:
        - Database connection pool and service initialization
        - Telegram webhook registration or polling
        - Graceful shutdown and resource cleanup
        """
        logger.info(
            "application_starting",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment
        )

        services = container

        try:
            if services is None:
                services = await ServiceContainer.create(settings, metrics)
            app.state.container = services

            await services.start()

            logger.info(
                "application_started",
                app_name=settings.app_name,
                version=settings.app_version,
                telegram_enabled=services.notifier.enabled,
                recipients=len(services.notifier.recipients)
            )

            yield

        except Exception as e:
            logger.error("application_startup_failed", error=str(e), exc_info=True)
            raise

        finally:
            logger.info("application_shutting_down")

            if services is not None:
                await services.close()

            logger.info("application_shutdown_complete")

    # ========================================================================
    # FastAPI Application
    # ========================================================================

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Looks animal records up by RFID tag and relays each scan to "
            "Telegram recipients and a live browser feed."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    if container is not None:
        app.state.container = container

    # ========================================================================
    # Middleware Configuration
    # ========================================================================

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(RequestLoggingMiddleware, metrics=metrics)

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(RfidApiError)
    async def service_exception_handler(request: Request, exc: RfidApiError):
        """Map service errors to the error envelope."""
        if isinstance(exc, StorageError):
            logger.error(
                "storage_error",
                path=request.url.path,
                cause=str(exc.__cause__) if exc.__cause__ else None
            )
        else:
            logger.warning(
                "request_error",
                path=request.url.path,
                error_code=exc.error_code,
                message=exc.message
            )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        logger.warning(
            "validation_error",
            path=request.url.path,
            errors=exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "message": _describe_validation_errors(exc)}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "http_exception",
            path=request.url.path,
            status_code=exc.status_code,
            detail=exc.detail
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "http_error", "message": str(exc.detail)}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            "unexpected_exception",
            path=request.url.path,
            error=str(exc),
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "message": "internal error"}
        )

    # ========================================================================
    # Health, Readiness and Metrics Endpoints
    # ========================================================================

    @app.get("/", tags=["Health"])
    async def root() -> Dict[str, Any]:
        return {"ok": True, "service": settings.app_name}

    @app.get("/health", tags=["Health"], response_class=JSONResponse)
    async def health_check() -> Dict[str, Any]:
        """
        Health check endpoint.

        Returns basic health status without checking dependencies.
        """
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment
        }

    @app.get("/ready", tags=["Health"], response_class=JSONResponse)
    async def readiness_check(request: Request) -> JSONResponse:
        """
        Readiness check endpoint.

        Verifies the database answers queries.
        """
        services: ServiceContainer = request.app.state.container
        database_ok = await services.repository.ping()

        checks = {
            "database": "healthy" if database_ok else "unhealthy",
            "live_feed_clients": services.broadcaster.client_count,
        }

        return JSONResponse(
            status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if database_ok else "not_ready",
                "service": settings.app_name,
                "version": settings.app_version,
                "checks": checks
            }
        )

    if settings.metrics_enabled:
        metrics_handler = get_metrics_handler(metrics)

        @app.get("/metrics", tags=["Monitoring"], response_class=PlainTextResponse)
        async def prometheus_metrics() -> Response:
            """Prometheus metrics endpoint."""
            return Response(content=metrics_handler(), media_type=CONTENT_TYPE_LATEST)

    # ========================================================================
    # API Router Registration
    # ========================================================================

    app.include_router(animals.router)
    app.include_router(live_feed.router)
    app.include_router(telegram.router)

    return app


# ASGI entrypoint (uvicorn rfid_api.src.main:app)
app = create_app()


def run() -> None:
    """
    Run the application with Uvicorn.

    Host and port come from settings (PORT / RFID_API_PORT).
    """
    settings = get_settings()

    logger.info(
        "starting_uvicorn_server",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )

    uvicorn.run(
        "rfid_api.src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run()
