import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

# Public pRPC hosts, ordered by reliability and geographic spread
DEFAULT_FALLBACK_ENDPOINTS = [
    "http://173.212.203.145:8899",
    "http://173.212.220.65:8899",
    "http://161.97.97.41:8899",
    "http://192.190.136.36:8899",
    "http://192.190.136.37:8899",
    "http://192.190.136.38:8899",
    "http://192.190.136.28:8899",
    "http://192.190.136.29:8899",
    "http://207.244.255.1:8899",
]


class GatewayConfig(BaseModel):
    # Upstream endpoints
    primary_endpoint: Optional[str] = Field(
        default=None, description="Preferred pRPC host, tried before the fallbacks"
    )
    fallback_endpoints: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_ENDPOINTS),
        description="Fallback pRPC hosts in priority order",
    )

    # Single upstream proxy mode
    proxy_url: Optional[str] = Field(
        default=None, description="Standalone pRPC proxy to forward every call to"
    )
    proxy_api_key: str = Field(
        default="", description="Shared secret sent as x-api-key to the proxy"
    )
    require_proxy: bool = Field(
        default=False, description="Refuse to serve without a proxy_url (production)"
    )

    # Inbound shared secret for the standalone proxy entry point
    api_key: str = Field(default="", description="Required x-api-key on the proxy entry point")

    # Timeouts (seconds)
    upstream_timeout_seconds: float = Field(default=5.0, gt=0)
    proxy_timeout_seconds: float = Field(default=10.0, gt=0)
    health_timeout_seconds: float = Field(default=5.0, gt=0)
    request_deadline_seconds: Optional[float] = Field(
        default=None, description="Optional overall budget across all host attempts"
    )

    # Response cache
    cache_ttl_seconds: float = Field(default=60.0, ge=0)
    cache_max_entries: int = Field(default=1024, ge=1)
    cacheable_methods: List[str] = Field(default_factory=lambda: ["getGossipNodes"])

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    log_level: str = "INFO"
    debug: bool = False

    @field_validator("primary_endpoint", "proxy_url")
    @classmethod
    def blank_url_is_unset(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @field_validator("fallback_endpoints")
    @classmethod
    def strip_blank_endpoints(cls, v):
        return [url.strip() for url in v if url and url.strip()]

    @field_validator("request_deadline_seconds")
    @classmethod
    def validate_deadline(cls, v):
        if v is not None and v <= 0:
            raise ValueError("request_deadline_seconds must be > 0")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


def load_config(config_path: str = "prpc_gateway.yml") -> GatewayConfig:
    """Load configuration from YAML file with environment variable overrides."""
    config_data: Dict[str, Any] = {}

    try:
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        pass
    except Exception as e:
        print(f"Warning: Failed to load config from {config_path}: {e}")

    _load_from_environment(config_data)

    return GatewayConfig(**config_data)


def _load_from_environment(config_data: Dict[str, Any]):
    """Apply PRPC_* environment variables on top of the file configuration."""

    field_mappings = {
        "PRPC_PRIMARY_ENDPOINT": ("primary_endpoint", str),
        "PRPC_FALLBACK_ENDPOINTS": ("fallback_endpoints", list),
        "PRPC_PROXY_URL": ("proxy_url", str),
        "PRPC_PROXY_API_KEY": ("proxy_api_key", str),
        "PRPC_REQUIRE_PROXY": ("require_proxy", bool),
        "PRPC_API_KEY": ("api_key", str),
        "PRPC_UPSTREAM_TIMEOUT_SECONDS": ("upstream_timeout_seconds", float),
        "PRPC_PROXY_TIMEOUT_SECONDS": ("proxy_timeout_seconds", float),
        "PRPC_HEALTH_TIMEOUT_SECONDS": ("health_timeout_seconds", float),
        "PRPC_REQUEST_DEADLINE_SECONDS": ("request_deadline_seconds", float),
        "PRPC_CACHE_TTL_SECONDS": ("cache_ttl_seconds", float),
        "PRPC_CACHE_MAX_ENTRIES": ("cache_max_entries", int),
        "PRPC_CACHEABLE_METHODS": ("cacheable_methods", list),
        "PRPC_HOST": ("host", str),
        "PRPC_PORT": ("port", int),
        "PRPC_LOG_LEVEL": ("log_level", str),
        "PRPC_DEBUG": ("debug", bool),
    }

    for env_key, (config_field, field_type) in field_mappings.items():
        env_value = os.getenv(env_key)
        if env_value is None:
            continue

        try:
            if field_type is bool:
                config_data[config_field] = env_value.lower() in ("true", "1", "yes", "on")
            elif field_type is int:
                config_data[config_field] = int(env_value)
            elif field_type is float:
                config_data[config_field] = float(env_value)
            elif field_type is list:
                # Comma separated, order preserved
                config_data[config_field] = [
                    item.strip() for item in env_value.split(",") if item.strip()
                ]
            else:
                config_data[config_field] = env_value
        except (ValueError, TypeError) as e:
            print(
                f"Warning: Invalid {field_type.__name__} value for {config_field}: "
                f"{env_value} ({e})"
            )
