from .rpc import (
    CACHE_HOST,
    DEFAULT_REQUEST_ID,
    HealthProbeResult,
    HostAttempt,
    RpcFailure,
    RpcRequest,
    RpcResult,
    RpcSuccess,
    strict_json_loads,
)
from .nodes import ApiResponse, LatencyPoint, NodeDetail, NodeMetrics, PNode, UptimePoint

__all__ = [
    "CACHE_HOST",
    "DEFAULT_REQUEST_ID",
    "HealthProbeResult",
    "HostAttempt",
    "RpcFailure",
    "RpcRequest",
    "RpcResult",
    "RpcSuccess",
    "ApiResponse",
    "LatencyPoint",
    "NodeDetail",
    "NodeMetrics",
    "PNode",
    "UptimePoint",
    "strict_json_loads",
]
