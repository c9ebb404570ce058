"""
HTTP client for single pRPC upstream calls.

One call is one HTTP request: no retries happen here. Every failure is raised
as UpstreamError with a short reason ("timeout", "HTTP 503", ...) so the
failover sequencer can record it and move on.
"""

import asyncio
from typing import Any, Dict, Optional, Tuple

import httpx

from .errors import UpstreamError
from .models import RpcRequest, strict_json_loads


class UpstreamClient:
    """Issues JSON-RPC calls and health probes against one endpoint at a time."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Optional httpx transport, used by tests to stand in for
                real upstream hosts.
        """
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def call(
        self,
        endpoint: str,
        request: RpcRequest,
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        POST one JSON-RPC request to endpoint and return the decoded JSON body.

        The outer wait_for cancels the in-flight request when the timeout
        fires, which closes the underlying connection with the client.

        Raises:
            UpstreamError: on timeout, transport error, non-2xx status, a
                request that cannot be encoded or a body that is not strict JSON.
        """
        request_headers = {"content-type": "application/json"}
        if headers:
            request_headers.update(headers)

        try:
            async with self._client(timeout) as client:
                response = await asyncio.wait_for(
                    client.post(endpoint, json=request.to_payload(), headers=request_headers),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise UpstreamError(endpoint, "timeout") from None
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamError(endpoint, f"network error: {str(e) or type(e).__name__}") from e
        except (ValueError, TypeError) as e:
            # Request body could not be encoded
            raise UpstreamError(endpoint, f"invalid request: {e}") from e

        if not response.is_success:
            raise UpstreamError(endpoint, f"HTTP {response.status_code}")

        try:
            return strict_json_loads(response.content)
        except ValueError as e:
            raise UpstreamError(endpoint, f"invalid JSON: {e}") from e

    async def probe_health(
        self, url: str, timeout: float, headers: Optional[Dict[str, str]] = None
    ) -> Tuple[int, str]:
        """GET url and return the raw (status, body); any status counts as reachable."""
        try:
            async with self._client(timeout) as client:
                response = await asyncio.wait_for(
                    client.get(url, headers=headers), timeout=timeout
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise UpstreamError(url, "timeout") from None
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamError(url, f"network error: {str(e) or type(e).__name__}") from e

        return response.status_code, response.text
