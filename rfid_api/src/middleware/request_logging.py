"""
Request logging and metrics middleware.

Assigns every HTTP request a correlation id (taken from X-Correlation-ID
when the caller sends one), binds it to the structlog context, logs start
and completion, and records Prometheus request metrics.
"""

import time
import uuid
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match
from starlette.types import ASGIApp

from shared.logging import bind_context, unbind_context
from shared.metrics import ScanMetrics

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging and metrics."""

    def __init__(self, app: ASGIApp, metrics: ScanMetrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        """Process request and log details."""
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        bind_context(correlation_id=correlation_id)

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"
        endpoint = self._endpoint(request)

        self.metrics.http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()

        logger.info("request_started", method=method, path=path, client_ip=client_ip)

        try:
            response = await call_next(request)

            duration = time.time() - start_time

            self.metrics.http_requests.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code
            ).inc()
            self.metrics.http_request_duration.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                duration=f"{duration:.3f}s"
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration=f"{duration:.3f}s",
                exc_info=True
            )
            raise

        finally:
            self.metrics.http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()
            unbind_context("correlation_id")

    @staticmethod
    def _endpoint(request: Request) -> str:
        """
        Route template (e.g. /api/animal) to keep metric labels bounded.

        Resolved before the request is routed, picking the route the router
        will pick: the first full match, else the first partial one.
        """
        partial = None
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match == Match.FULL:
                return getattr(route, "path", None) or "unmatched"
            if match == Match.PARTIAL and partial is None:
                partial = route
        return getattr(partial, "path", None) or "unmatched"
