"""
Upstream host resolution.

The host list and the calling strategy are resolved once at startup from the
configuration. Per-request code only reads the resulting UpstreamPlan.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import GatewayConfig
from .errors import ConfigurationError

MODE_PROXY = "proxy"
MODE_DIRECT = "direct"


@dataclass(frozen=True)
class UpstreamPlan:
    """Concrete upstream strategy for every request served by this process."""

    mode: str
    hosts: Tuple[str, ...]
    timeout_seconds: float
    headers: Dict[str, str] = field(default_factory=dict)
    # Status reported when every host failed: 502 for a single proxy, 503 for fallbacks
    failure_status: int = 503
    proxy_url: Optional[str] = None
    config_error: Optional[ConfigurationError] = None

    @property
    def unwraps_envelope(self) -> bool:
        return self.mode == MODE_PROXY

    def ensure_usable(self) -> None:
        """Raise the startup configuration error, if any, before any network call."""
        if self.config_error is not None:
            raise self.config_error


def _normalize(url: str) -> str:
    return url.strip().rstrip("/")


def resolve_hosts(config: GatewayConfig) -> List[str]:
    """Primary endpoint first, then fallbacks in declaration order, without duplicates."""
    candidates = []
    if config.primary_endpoint:
        candidates.append(config.primary_endpoint)
    candidates.extend(config.fallback_endpoints)

    hosts: List[str] = []
    seen = set()
    for url in candidates:
        key = _normalize(url)
        if not key or key in seen:
            continue
        seen.add(key)
        hosts.append(url.strip())

    if not hosts:
        raise ConfigurationError(
            "No upstream hosts configured",
            detail="Set primary_endpoint or fallback_endpoints",
        )
    return hosts


def resolve_upstream_plan(config: GatewayConfig) -> UpstreamPlan:
    """Pick proxy mode or direct failover mode from the configuration.

    Configuration problems do not raise here: they are captured in the plan
    so the service still starts and answers every request with a 400.
    """
    if config.proxy_url:
        return UpstreamPlan(
            mode=MODE_PROXY,
            hosts=(config.proxy_url,),
            timeout_seconds=config.proxy_timeout_seconds,
            headers={"x-api-key": config.proxy_api_key},
            failure_status=502,
            proxy_url=config.proxy_url,
        )

    if config.require_proxy:
        return UpstreamPlan(
            mode=MODE_PROXY,
            hosts=(),
            timeout_seconds=config.proxy_timeout_seconds,
            failure_status=502,
            config_error=ConfigurationError(
                "Proxy URL not configured",
                proxy_config_error="proxy_url is required when require_proxy is set",
            ),
        )

    try:
        hosts = resolve_hosts(config)
    except ConfigurationError as e:
        return UpstreamPlan(
            mode=MODE_DIRECT,
            hosts=(),
            timeout_seconds=config.upstream_timeout_seconds,
            config_error=e,
        )

    return UpstreamPlan(
        mode=MODE_DIRECT,
        hosts=tuple(hosts),
        timeout_seconds=config.upstream_timeout_seconds,
        failure_status=503,
    )
