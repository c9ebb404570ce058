"""
JSON-RPC request and gateway response envelope models.
"""

import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_REQUEST_ID = "prpc-gateway"
CACHE_HOST = "cache"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _reject_constant(name: str):
    raise ValueError(f"{name} is not a valid JSON value")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"{text} is out of range for a JSON number")
    return value


def strict_json_loads(raw: Union[str, bytes]) -> Any:
    """json.loads that rejects NaN, Infinity and overflowing numbers.

    Anything it returns can be re-encoded as standard JSON.
    """
    return json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)


class RpcRequest(BaseModel):
    """One outbound JSON-RPC 2.0 call, built per inbound request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: Union[str, int] = DEFAULT_REQUEST_ID
    method: str = Field(..., min_length=1, description="pRPC method name")
    params: List[Any] = Field(default_factory=list, description="Positional parameters")

    model_config = ConfigDict(frozen=True)

    @field_validator("id", mode="before")
    @classmethod
    def default_missing_id(cls, v):
        return DEFAULT_REQUEST_ID if v is None else v

    @field_validator("params", mode="before")
    @classmethod
    def default_missing_params(cls, v):
        return [] if v is None else v

    def to_payload(self) -> Dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


class HostAttempt(BaseModel):
    """A failed attempt against one upstream host."""

    host: str
    error: str

    model_config = ConfigDict(frozen=True)


class RpcSuccess(BaseModel):
    """Envelope for a successful answer, live or from cache."""

    ok: Literal[True] = True
    host: str = Field(..., description="Upstream host that answered, or 'cache'")
    data: Any = None
    proxy: Optional[str] = Field(default=None, description="Proxy URL in single-proxy mode")
    timestamp: str = Field(default_factory=_now_iso)

    model_config = ConfigDict(frozen=True)

    @property
    def from_cache(self) -> bool:
        return self.host == CACHE_HOST

    def to_body(self) -> Dict[str, Any]:
        body = self.model_dump()
        if body["proxy"] is None:
            del body["proxy"]
        return body


class RpcFailure(BaseModel):
    """Envelope for a request that could not be answered."""

    ok: Literal[False] = False
    error: str
    detail: Optional[Any] = None
    last_host: Optional[str] = Field(default=None, alias="lastHost")
    attempts: Optional[List[HostAttempt]] = None
    proxy_config_error: Optional[str] = Field(default=None, alias="proxyConfigError")
    timestamp: str = Field(default_factory=_now_iso)
    status_code: int = Field(default=503, exclude=True)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


RpcResult = Union[RpcSuccess, RpcFailure]


class HealthProbeResult(BaseModel):
    """Outcome of probing the configured proxy's /health path."""

    ok: bool
    selected_proxy_url: Optional[str] = Field(default=None, alias="selectedProxyUrl")
    test_health_endpoint: Optional[Dict[str, Any]] = Field(
        default=None, alias="testHealthEndpoint"
    )
    error: Optional[str] = None
    timestamp: str = Field(default_factory=_now_iso)

    model_config = ConfigDict(populate_by_name=True)

    def to_body(self) -> Dict[str, Any]:
        body = self.model_dump(by_alias=True)
        if body["error"] is None:
            del body["error"]
        return body
