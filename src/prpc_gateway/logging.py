"""
Structured Logging for the pRPC Gateway

JSON log lines with request IDs and typed events, so that every upstream
attempt, failover step and cache decision can be traced per request.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

# Context variable for tracking request ID across async operations
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EventType(Enum):
    """Event types emitted by the gateway."""

    # Request/Response events
    REQUEST_START = "request_start"
    REQUEST_END = "request_end"

    # Gateway events
    GATEWAY_START = "gateway_start"
    GATEWAY_ERROR = "gateway_error"
    CONFIG_ERROR = "config_error"
    INVALID_REQUEST = "invalid_request"

    # Upstream events
    UPSTREAM_ATTEMPT = "upstream_attempt"
    UPSTREAM_SUCCESS = "upstream_success"
    UPSTREAM_FAILURE = "upstream_failure"
    FAILOVER = "failover"
    ALL_HOSTS_FAILED = "all_hosts_failed"
    DEADLINE_EXCEEDED = "deadline_exceeded"

    # Cache events
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_STORE = "cache_store"
    CACHE_EVICT = "cache_evict"

    # Health check events
    HEALTH_CHECK = "health_check"
    HEALTH_CHECK_FAILED = "health_check_failed"

    # Authentication events
    AUTH_FAILURE = "auth_failure"


class StructuredFormatter(logging.Formatter):
    """Formats log records as single-line JSON."""

    _FIELDS = ("event_type", "host", "method", "path", "status_code", "duration_ms", "metadata")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            log_entry["request_id"] = request_id

        for field in self._FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(getattr(record, "extra_fields"))

        return json.dumps(log_entry, default=str)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that drops records once the stream has been closed."""

    def emit(self, record):
        if getattr(self.stream, "closed", False):
            return
        try:
            super().emit(record)
        except (ValueError, OSError) as e:
            # Interpreter or test-runner shutdown closes stdout under us
            if "closed file" in str(e).lower() or "bad file descriptor" in str(e).lower():
                return
            raise


class GatewayLogger:
    """Structured logger for the pRPC gateway."""

    def __init__(self, name: str = "prpc_gateway", level: Optional[LogLevel] = None):
        self.name = name
        self.logger = logging.getLogger(name)
        # Without an explicit level, child loggers follow the "prpc_gateway" level
        if level is not None:
            self.logger.setLevel(getattr(logging, level.value))

        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        handler = SafeStreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)
        self.logger.propagate = False

    def set_level(self, level: LogLevel):
        self.logger.setLevel(getattr(logging, level.value))

    def _log(self, level: LogLevel, message: str, **kwargs):
        extra = {}

        event_type = kwargs.pop("event_type", None)
        if event_type is not None:
            extra["event_type"] = (
                event_type.value if isinstance(event_type, EventType) else event_type
            )

        for field in ("host", "method", "path", "status_code", "duration_ms", "metadata"):
            if field in kwargs:
                extra[field] = kwargs.pop(field)

        if kwargs:
            extra["extra_fields"] = kwargs

        getattr(self.logger, level.value.lower())(message, extra=extra)

    def debug(self, message: str, **kwargs):
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(LogLevel.CRITICAL, message, **kwargs)

    def log_event(self, event_type: EventType, message: str, **kwargs):
        """Log a structured event at INFO."""
        self.info(message, event_type=event_type, **kwargs)

    def log_request_start(self, method: str, path: str, **kwargs):
        self.log_event(
            EventType.REQUEST_START, f"{method} {path}", method=method, path=path, **kwargs
        )

    def log_request_end(
        self, method: str, path: str, status_code: int, duration_ms: float, **kwargs
    ):
        self.log_event(
            EventType.REQUEST_END,
            f"{method} {path} - {status_code} ({duration_ms:.1f}ms)",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs,
        )

    def log_upstream_attempt(
        self, host: str, rpc_method: str, attempt: int, total: int, timeout: float, **kwargs
    ):
        self.debug(
            f"Calling {host} for {rpc_method} (attempt {attempt}/{total}, timeout {timeout:.1f}s)",
            event_type=EventType.UPSTREAM_ATTEMPT,
            host=host,
            metadata={"rpc_method": rpc_method, "attempt": attempt, "total": total},
            **kwargs,
        )

    def log_upstream_success(self, host: str, rpc_method: str, duration_ms: float, **kwargs):
        self.log_event(
            EventType.UPSTREAM_SUCCESS,
            f"Successful upstream host: {host} ({duration_ms:.1f}ms)",
            host=host,
            duration_ms=duration_ms,
            metadata={"rpc_method": rpc_method},
            **kwargs,
        )

    def log_upstream_failure(
        self, host: str, rpc_method: str, reason: str, duration_ms: float, **kwargs
    ):
        self.warning(
            f"pRPC host {host} failed: {reason}",
            event_type=EventType.UPSTREAM_FAILURE,
            host=host,
            duration_ms=duration_ms,
            metadata={"rpc_method": rpc_method, "reason": reason},
            **kwargs,
        )

    def log_failover(self, failed_host: str, next_host: str, **kwargs):
        self.log_event(
            EventType.FAILOVER,
            f"Host {failed_host} failed, trying {next_host}",
            host=next_host,
            metadata={"failed_host": failed_host},
            **kwargs,
        )

    def log_all_hosts_failed(
        self, rpc_method: str, attempted: List[str], last_error: str, **kwargs
    ):
        self.error(
            f"All pRPC hosts failed for {rpc_method}: {last_error}",
            event_type=EventType.ALL_HOSTS_FAILED,
            metadata={"rpc_method": rpc_method, "attempted": attempted, "last_error": last_error},
            **kwargs,
        )

    def log_cache_event(self, event_type: EventType, key: str, **kwargs):
        self.debug(f"Cache {event_type.value}: {key}", event_type=event_type, **kwargs)

    def log_health_check(
        self, url: str, status: str, duration_ms: Optional[float] = None, **kwargs
    ):
        event_type = (
            EventType.HEALTH_CHECK if status == "healthy" else EventType.HEALTH_CHECK_FAILED
        )
        message = f"Health check: {url} - {status}"
        if duration_ms is not None:
            message += f" ({duration_ms:.1f}ms)"
        self.log_event(event_type, message, duration_ms=duration_ms, **kwargs)

    def log_auth_failure(self, path: str, reason: str, **kwargs):
        self.warning(
            f"Unauthorized request to {path}: {reason}",
            event_type=EventType.AUTH_FAILURE,
            path=path,
            **kwargs,
        )


# Global logger instance
logger = GatewayLogger(level=LogLevel.INFO)


def get_logger(name: str = "prpc_gateway") -> GatewayLogger:
    """Get a logger instance."""
    if name == "prpc_gateway":
        return logger
    return GatewayLogger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context. If not provided, generates a new one."""
    if request_id is None:
        request_id = f"req_{uuid.uuid4().hex[:12]}"

    request_id_context.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return request_id_context.get()


def clear_request_id():
    request_id_context.set(None)


def configure_logging(level: LogLevel = LogLevel.INFO, enable_debug: bool = False):
    """Configure global logging settings."""
    if enable_debug:
        level = LogLevel.DEBUG

    logger.set_level(level)
    logger.info(
        "Logging configured",
        event_type=EventType.GATEWAY_START,
        metadata={"log_level": level.value, "debug_enabled": enable_debug},
    )
