"""
Error types for the pRPC gateway.

Every error that reaches the HTTP surface is a GatewayError carrying the status
code it maps to. UpstreamError is the per-host failure raised by the upstream
caller and is always recovered by the failover sequencer.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for errors reported to the inbound caller."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None, **extra):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.extra = extra


class ConfigurationError(GatewayError):
    """No usable upstream endpoint is configured."""

    status_code = 400


class InvalidRequestError(GatewayError):
    """Malformed method, params or body from the inbound caller."""

    status_code = 400


class UnauthorizedError(GatewayError):
    """Shared-secret header missing or mismatched."""

    status_code = 401


class UpstreamError(Exception):
    """A single upstream host failed to answer."""

    def __init__(self, host: str, reason: str):
        super().__init__(f"{host}: {reason}")
        self.host = host
        self.reason = reason
