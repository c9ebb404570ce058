"""
Sequential failover across upstream pRPC hosts.

Hosts are tried strictly in order and the first success wins. A failing host
costs at most its timeout, so without a deadline the worst case for N hosts is
N x timeout.
"""

import time
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ConfigurationError, UpstreamError
from .logging import EventType, get_logger
from .metrics import MetricNames, MetricsCollector, get_metrics
from .models import HostAttempt, RpcFailure, RpcRequest, RpcResult, RpcSuccess
from .upstream import UpstreamClient

ALL_HOSTS_FAILED = "All pRPC hosts failed"
DEADLINE_EXCEEDED = "Request deadline exceeded"


class FailoverSequencer:
    """Walks a host list in order until one upstream answers."""

    def __init__(
        self,
        client: UpstreamClient,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self.logger = get_logger("prpc_gateway.failover")

    async def attempt_all(
        self,
        hosts: Sequence[str],
        request: RpcRequest,
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
        deadline_seconds: Optional[float] = None,
        failure_status: int = 503,
    ) -> RpcResult:
        """
        Try each host in order and return the first successful answer.

        Args:
            hosts: Upstream endpoints, highest priority first.
            request: The JSON-RPC call to forward unchanged to every host.
            timeout: Per-host timeout in seconds.
            headers: Extra headers for every outbound call.
            deadline_seconds: Optional budget for the whole sequence. Each
                per-host timeout is capped to what is left of it.
            failure_status: HTTP status carried by the failure result.

        Returns:
            RpcSuccess tagged with the answering host, or RpcFailure listing
            every attempt in host order.
        """
        if not hosts:
            raise ConfigurationError("No upstream hosts configured")

        attempts: List[HostAttempt] = []
        started = self._clock()

        for index, host in enumerate(hosts):
            call_timeout = timeout
            if deadline_seconds is not None:
                remaining = deadline_seconds - (self._clock() - started)
                if remaining <= 0:
                    return self._deadline_exceeded(
                        request, attempts, deadline_seconds, failure_status
                    )
                call_timeout = min(timeout, remaining)

            if index > 0:
                self.logger.log_failover(hosts[index - 1], host)
                self._metrics.increment_counter(MetricNames.FAILOVERS)

            self.logger.log_upstream_attempt(
                host, request.method, index + 1, len(hosts), call_timeout
            )
            self._metrics.increment_counter(
                MetricNames.UPSTREAM_REQUESTS, host=host, labels={"rpc_method": request.method}
            )

            call_started = self._clock()
            try:
                data = await self._client.call(host, request, call_timeout, headers)
            except UpstreamError as e:
                duration_ms = (self._clock() - call_started) * 1000
                attempts.append(HostAttempt(host=host, error=e.reason))
                self.logger.log_upstream_failure(host, request.method, e.reason, duration_ms)
                self._metrics.increment_counter(
                    MetricNames.UPSTREAM_FAILURES, host=host, labels={"reason": _reason_class(e)}
                )
                continue

            duration_ms = (self._clock() - call_started) * 1000
            self.logger.log_upstream_success(host, request.method, duration_ms)
            self._metrics.record_timer(MetricNames.UPSTREAM_DURATION, duration_ms, host=host)
            return RpcSuccess(host=host, data=data)

        last = attempts[-1]
        self.logger.log_all_hosts_failed(request.method, [a.host for a in attempts], last.error)
        self._metrics.increment_counter(MetricNames.ALL_HOSTS_FAILED)
        return RpcFailure(
            error=ALL_HOSTS_FAILED,
            detail=last.error,
            last_host=last.host,
            attempts=attempts,
            status_code=failure_status,
        )

    def _deadline_exceeded(
        self,
        request: RpcRequest,
        attempts: List[HostAttempt],
        deadline_seconds: float,
        failure_status: int,
    ) -> RpcFailure:
        self.logger.warning(
            f"Deadline of {deadline_seconds:.1f}s spent after {len(attempts)} host(s)",
            event_type=EventType.DEADLINE_EXCEEDED,
            metadata={"rpc_method": request.method, "attempted": [a.host for a in attempts]},
        )
        return RpcFailure(
            error=DEADLINE_EXCEEDED,
            detail=attempts[-1].error if attempts else None,
            last_host=attempts[-1].host if attempts else None,
            attempts=attempts,
            status_code=failure_status,
        )


def _reason_class(error: UpstreamError) -> str:
    # "HTTP 503" -> "http", "network error: ..." -> "network"
    return error.reason.split(" ", 1)[0].lower()
