"""
Normalisation of pRPC node data.

Upstream hosts do not agree on field names (pubkey/identity/id,
gossip/gossip_address/address, ...), so everything the node endpoints return
goes through these helpers first.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import ValidationError

from .logging import get_logger
from .models import NodeDetail, NodeMetrics, PNode

logger = get_logger("prpc_gateway.nodes")


def _first(raw: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = raw.get(name)
        if value:
            return value
    return default


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _last_seen(value: Any) -> str:
    # Some hosts report epoch milliseconds instead of an ISO string
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return str(value)
    return str(value)


def normalize_node(raw: Dict[str, Any]) -> PNode:
    """Map one getGossipNodes entry onto PNode."""
    pubkey = _first(raw, "pubkey", "identity", "id", default="")
    online = raw.get("online_status") is not False and bool(raw.get("pubkey"))
    return PNode(
        pubkey=str(pubkey),
        gossip_address=str(_first(raw, "gossip", "gossip_address", "address", default="")),
        version=str(raw.get("version") or ""),
        last_seen=_last_seen(_first(raw, "lastSeen", "timestamp", "last_seen", default=_now_iso())),
        latency=raw.get("latency") or 0,
        stake=raw.get("stake") or 0,
        uptime=raw.get("uptime") or 0,
        storage_capacity=raw.get("storage_capacity") or 0,
        online_status="online" if online else "offline",
        features=raw.get("features") or [],
        location=raw.get("location"),
        operator=raw.get("operator"),
    )


def parse_gossip_response(body: Any) -> List[PNode]:
    """Extract nodes from a JSON-RPC getGossipNodes response; [] when malformed."""
    result = body.get("result") if isinstance(body, dict) else None
    if result is None:
        logger.warning("getGossipNodes response has no result", metadata={"body": body})
        return []
    if not isinstance(result, list):
        logger.warning("getGossipNodes result is not a list", metadata={"result": result})
        return []
    nodes = []
    for raw in result:
        if not isinstance(raw, dict):
            continue
        try:
            nodes.append(normalize_node(raw))
        except ValidationError as e:
            logger.warning(
                "Skipping malformed gossip node",
                metadata={"pubkey": raw.get("pubkey"), "errors": e.error_count()},
            )
    return nodes


def format_node_detail(raw: Dict[str, Any]) -> NodeDetail:
    """Map a getNodeInfo result onto NodeDetail."""
    status = raw.get("online_status")
    return NodeDetail(
        pubkey=str(_first(raw, "pubkey", "id", default="")),
        gossip_address=str(_first(raw, "gossip_address", "address", default="")),
        version=str(raw.get("version") or "unknown"),
        latency=raw.get("latency") or 0,
        stake=raw.get("stake") or 0,
        uptime=raw.get("uptime") or 0,
        storage_capacity=raw.get("storage_capacity") or 0,
        online_status=status if status in ("online", "offline") else "unknown",
        last_seen=_last_seen(raw.get("last_seen") or _now_iso()),
        features=raw.get("features") or [],
        operator=raw.get("operator"),
        location=raw.get("location"),
        history=raw.get("history") or [],
        uptime_history=raw.get("uptime_history") or [],
    )


def calculate_metrics(nodes: List[PNode]) -> NodeMetrics:
    """Aggregate counts and latency stats; latency only over online nodes with latency > 0."""
    if not nodes:
        return NodeMetrics()

    online = [n for n in nodes if n.online_status == "online"]
    latencies = [n.latency for n in online if n.latency > 0]

    return NodeMetrics(
        total_nodes=len(nodes),
        online_nodes=len(online),
        offline_nodes=len(nodes) - len(online),
        average_latency=round(sum(latencies) / len(latencies)) if latencies else 0,
        highest_latency=max(latencies, default=0),
        lowest_latency=min(latencies) if latencies else 0,
    )
