"""
Request gateway: cache lookup, failover and response shaping.

A Gateway is built once per process from the configuration. It owns the
response cache and the resolved upstream plan; the HTTP routes in app.py only
translate inbound requests into RpcRequest and results into JSON responses.
"""

from typing import Any, Dict, Optional

from pydantic import ValidationError

from .cache import MISS, ResponseCache, make_key
from .config import GatewayConfig
from .errors import ConfigurationError, InvalidRequestError, UpstreamError
from .failover import DEADLINE_EXCEEDED, FailoverSequencer
from .hosts import UpstreamPlan, resolve_upstream_plan
from .logging import get_logger
from .metrics import MetricNames, MetricsCollector, Timer, get_metrics
from .models import (
    CACHE_HOST,
    HealthProbeResult,
    RpcFailure,
    RpcRequest,
    RpcResult,
    RpcSuccess,
    strict_json_loads,
)
from .upstream import UpstreamClient

DEFAULT_METHOD = "getGossipNodes"
PROXY_CONTACT_FAILED = "Failed to contact pRPC proxy"
PROXY_ERROR = "Proxy error"


class Gateway:
    """Serves JSON-RPC requests from cache or through the failover sequencer."""

    def __init__(
        self,
        config: GatewayConfig,
        cache: Optional[ResponseCache] = None,
        client: Optional[UpstreamClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.metrics = metrics or get_metrics()
        self.plan: UpstreamPlan = resolve_upstream_plan(config)
        self.cache = cache or ResponseCache(
            ttl_seconds=config.cache_ttl_seconds,
            max_entries=config.cache_max_entries,
            metrics=self.metrics,
        )
        self.client = client or UpstreamClient()
        self.sequencer = FailoverSequencer(self.client, metrics=self.metrics)
        self._cacheable_methods = frozenset(config.cacheable_methods)
        self.logger = get_logger("prpc_gateway.gateway")

    def is_cacheable(self, method: str) -> bool:
        return method in self._cacheable_methods

    async def handle(self, request: RpcRequest) -> RpcResult:
        """
        Answer one JSON-RPC request.

        Raises:
            ConfigurationError: when no upstream is usable; raised before any
                cache or network access.
        """
        self.plan.ensure_usable()

        cache_key = None
        if self.is_cacheable(request.method):
            cache_key = make_key(request.method, request.params)
            cached = self.cache.get(cache_key)
            if cached is not MISS:
                return RpcSuccess(host=CACHE_HOST, data=cached)

        result = await self.sequencer.attempt_all(
            self.plan.hosts,
            request,
            timeout=self.plan.timeout_seconds,
            headers=self.plan.headers,
            deadline_seconds=self.config.request_deadline_seconds,
            failure_status=self.plan.failure_status,
        )

        if isinstance(result, RpcFailure):
            if self.plan.unwraps_envelope and result.error != DEADLINE_EXCEEDED:
                # A non-2xx answer from the proxy is reported apart from no answer at all
                answered = (result.detail or "").startswith("HTTP ")
                error = PROXY_ERROR if answered else PROXY_CONTACT_FAILED
                return result.model_copy(update={"error": error})
            return result

        if self.plan.unwraps_envelope:
            result = self._unwrap_proxy_envelope(result)

        if cache_key is not None and not _is_rpc_error(result.data):
            self.cache.put(cache_key, result.data)

        return result

    def _unwrap_proxy_envelope(self, result: RpcSuccess) -> RpcSuccess:
        """A proxy answers {ok, host, data}; surface the inner host and payload."""
        body = result.data
        host = self.plan.proxy_url or result.host
        data = body
        if isinstance(body, dict) and "data" in body:
            host = body.get("host") or host
            data = body["data"]
        return RpcSuccess(host=host, data=data, proxy=self.plan.proxy_url)

    async def probe_proxy_health(self) -> HealthProbeResult:
        """Query the configured proxy's /health path; never cached, no failover."""
        proxy_url = self.config.proxy_url
        if not proxy_url:
            raise ConfigurationError(
                "Proxy URL not configured",
                proxy_config_error="proxy_url is not set",
            )

        health_url = f"{proxy_url.rstrip('/')}/health"
        self.metrics.increment_counter(MetricNames.HEALTH_CHECKS)
        timer = Timer(self.metrics, MetricNames.HEALTH_CHECK_DURATION, host=proxy_url)
        try:
            with timer:
                status, body = await self.client.probe_health(
                    health_url,
                    timeout=self.config.health_timeout_seconds,
                    headers={"x-api-key": self.config.proxy_api_key},
                )
        except UpstreamError as e:
            self.metrics.increment_counter(MetricNames.HEALTH_CHECK_FAILURES)
            self.logger.log_health_check(health_url, "unreachable", metadata={"error": e.reason})
            return HealthProbeResult(
                ok=False,
                error="Failed to reach proxy health endpoint",
                selected_proxy_url=proxy_url,
                test_health_endpoint={"error": e.reason},
            )

        self.logger.log_health_check(
            health_url, "healthy" if 200 <= status < 300 else f"status {status}", timer.duration_ms
        )
        return HealthProbeResult(
            ok=True,
            selected_proxy_url=proxy_url,
            test_health_endpoint={"status": status, "body": body},
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "mode": self.plan.mode,
            "hosts": len(self.plan.hosts),
            "cache": self.cache.stats(),
        }


def _is_rpc_error(data: Any) -> bool:
    return isinstance(data, dict) and data.get("error") is not None


def _validation_detail(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    )


def build_request(data: Dict[str, Any]) -> RpcRequest:
    """Validate an inbound JSON-RPC call.

    Raises:
        InvalidRequestError: when method or params are malformed.
    """
    try:
        return RpcRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError("Invalid JSON-RPC request", detail=_validation_detail(e)) from e


def parse_query_request(method: Optional[str], params: Optional[str]) -> RpcRequest:
    """Build a request from ?method=...&params=<JSON array> query parameters."""
    decoded: Any = []
    if params:
        try:
            decoded = strict_json_loads(params)
        except ValueError as e:
            raise InvalidRequestError("Invalid params", detail=f"params is not valid JSON: {e}")
    return build_request({"method": method or DEFAULT_METHOD, "params": decoded})


def parse_body_request(raw: bytes) -> RpcRequest:
    """Build a request from a JSON-RPC POST body."""
    try:
        body = strict_json_loads(raw) if raw else None
    except ValueError as e:
        raise InvalidRequestError("Invalid request body", detail=f"body is not valid JSON: {e}")

    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON-RPC body", detail="expected a JSON object")
    if not body.get("method"):
        raise InvalidRequestError("Invalid JSON-RPC body", detail="method is required")
    return build_request(body)
