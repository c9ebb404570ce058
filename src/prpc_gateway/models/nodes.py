from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class PNode(BaseModel):
    """A storage-network node as reported by getGossipNodes."""

    pubkey: str = ""
    gossip_address: str = ""
    version: str = ""
    latency: float = 0
    stake: float = 0
    uptime: float = 0
    storage_capacity: float = 0
    online_status: Literal["online", "offline", "unknown"] = "unknown"
    last_seen: str
    features: List[Any] = Field(default_factory=list)
    location: Optional[str] = None
    operator: Optional[str] = None


class LatencyPoint(BaseModel):
    timestamp: str
    latency: float


class UptimePoint(BaseModel):
    timestamp: str
    uptime: float


class NodeDetail(PNode):
    """Single node as reported by getNodeInfo, with optional history."""

    history: List[LatencyPoint] = Field(default_factory=list)
    uptime_history: List[UptimePoint] = Field(default_factory=list)


class NodeMetrics(BaseModel):
    total_nodes: int = 0
    online_nodes: int = 0
    offline_nodes: int = 0
    average_latency: float = 0
    highest_latency: float = 0
    lowest_latency: float = 0


class ApiResponse(BaseModel):
    """Envelope for the node listing and node detail endpoints."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    host: Optional[str] = None
    timestamp: str

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
