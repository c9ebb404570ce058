"""
Request Logging Middleware

Assigns a request ID to every inbound call, logs start/end with timing and
records request metrics.
"""

import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import EventType, clear_request_id, get_logger, set_request_id
from .metrics import MetricNames, get_metrics


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for structured request/response logging and metrics."""

    def __init__(
        self,
        app: ASGIApp,
        logger_name: str = "prpc_gateway.middleware",
        exclude_paths: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            app: ASGI application
            logger_name: Name for the logger instance
            exclude_paths: Exact paths that are served without logging
        """
        super().__init__(app)
        self.logger = get_logger(logger_name)
        self.metrics = get_metrics()
        self.exclude_paths = set(exclude_paths or ["/health", "/metrics", "/favicon.ico"])

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        set_request_id(request_id)

        start_time = time.monotonic()
        method = request.method
        labels = {"method": method, "path": self._normalize_path(path)}

        try:
            self.logger.log_request_start(
                method=method,
                path=path,
                metadata={
                    "query_params": str(request.query_params) if request.query_params else None,
                    "user_agent": request.headers.get("user-agent"),
                    "client_ip": self._get_client_ip(request),
                },
            )

            response = await call_next(request)

            duration_ms = (time.monotonic() - start_time) * 1000
            self.logger.log_request_end(
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            self.metrics.record_timer(MetricNames.REQUEST_DURATION, duration_ms, labels=labels)
            self.metrics.increment_counter(
                MetricNames.REQUESTS_TOTAL, labels={**labels, "status": str(response.status_code)}
            )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                self.metrics.record_histogram(
                    MetricNames.RESPONSE_SIZE, int(content_length), labels=labels
                )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.logger.error(
                f"Request processing error: {method} {path}",
                event_type=EventType.GATEWAY_ERROR,
                method=method,
                path=path,
                duration_ms=duration_ms,
                metadata={"error": str(e), "error_type": type(e).__name__},
            )
            self.metrics.increment_counter(
                MetricNames.REQUEST_ERRORS, labels={**labels, "error_type": type(e).__name__}
            )
            raise

        finally:
            clear_request_id()

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _normalize_path(self, path: str) -> str:
        # /api/node/<pubkey> -> /api/node/{pubkey}
        parts = path.strip("/").split("/")
        if len(parts) == 3 and parts[:2] == ["api", "node"]:
            parts[2] = "{pubkey}"
        return "/" + "/".join(parts)


def add_logging_middleware(app, **kwargs):
    """Add logging middleware to a FastAPI app."""
    app.add_middleware(LoggingMiddleware, **kwargs)
    return app
