import secrets
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from prpc_gateway.config import GatewayConfig, load_config
from prpc_gateway.errors import ConfigurationError, GatewayError, UnauthorizedError
from prpc_gateway.gateway import Gateway, parse_body_request, parse_query_request
from prpc_gateway.logging import EventType, LogLevel, configure_logging, get_logger
from prpc_gateway.metrics import MetricNames, get_metrics
from prpc_gateway.middleware import add_logging_middleware
from prpc_gateway.models import ApiResponse, RpcFailure, RpcRequest, RpcResult
from prpc_gateway.nodes import calculate_metrics, format_node_detail, parse_gossip_response

# Successful gateway answers may be reused by CDNs for as long as our own cache
CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"

logger = get_logger("prpc_gateway.app")
metrics = get_metrics()
router = APIRouter()


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def require_api_key(request: Request, x_api_key: Optional[str] = Header(default=None)) -> None:
    """Reject proxy-entry calls whose x-api-key does not match the configured secret."""
    expected = request.app.state.config.api_key
    if not expected:
        return

    if x_api_key is None or not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        reason = "missing x-api-key" if x_api_key is None else "x-api-key mismatch"
        logger.log_auth_failure(request.url.path, reason)
        metrics.increment_counter(MetricNames.AUTH_FAILURES)
        raise UnauthorizedError("Unauthorized")


async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    """Render every GatewayError as the failure envelope."""
    if isinstance(exc, ConfigurationError):
        event_type = EventType.CONFIG_ERROR
    elif isinstance(exc, UnauthorizedError):
        event_type = EventType.AUTH_FAILURE
    else:
        event_type = EventType.INVALID_REQUEST

    logger.warning(
        f"{request.method} {request.url.path} rejected: {exc.message}",
        event_type=event_type,
        status_code=exc.status_code,
        metadata={"detail": exc.detail},
    )
    failure = RpcFailure(
        error=exc.message,
        detail=exc.detail,
        proxy_config_error=exc.extra.get("proxy_config_error"),
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=failure.to_body())


def _render(result: RpcResult) -> JSONResponse:
    if isinstance(result, RpcFailure):
        return JSONResponse(status_code=result.status_code, content=result.to_body())
    return JSONResponse(content=result.to_body(), headers={"Cache-Control": CACHE_CONTROL})


# Dashboard-facing gateway


@router.get("/api/prpc")
async def prpc_query(
    method: Optional[str] = None,
    params: Optional[str] = None,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Forward ?method=...&params=<JSON array> to the upstream pRPC hosts."""
    return _render(await gateway.handle(parse_query_request(method, params)))


@router.post("/api/prpc")
async def prpc_body(request: Request, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Forward a JSON-RPC 2.0 body to the upstream pRPC hosts."""
    return _render(await gateway.handle(parse_body_request(await request.body())))


@router.get("/api/prpc/test")
async def prpc_proxy_health(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Probe the configured proxy's /health endpoint and surface its raw answer."""
    probe = await gateway.probe_proxy_health()
    return JSONResponse(status_code=200 if probe.ok else 502, content=probe.to_body())


# Standalone proxy entry point, guarded by the shared secret


@router.post("/", dependencies=[Depends(require_api_key)])
async def proxy_body(request: Request, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    return _render(await gateway.handle(parse_body_request(await request.body())))


@router.get("/", dependencies=[Depends(require_api_key)])
async def proxy_query(
    method: Optional[str] = None,
    params: Optional[str] = None,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    return _render(await gateway.handle(parse_query_request(method, params)))


@router.get("/health")
def health(gateway: Gateway = Depends(get_gateway)):
    return {"status": "ok", "hosts": len(gateway.plan.hosts), "mode": gateway.plan.mode}


# Node data


@router.get("/api/nodes")
async def list_nodes(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """All gossip nodes, normalised, with aggregate metrics."""
    result = await gateway.handle(RpcRequest(method="getGossipNodes"))
    if isinstance(result, RpcFailure):
        body = ApiResponse(success=False, error="Failed to fetch nodes", timestamp=result.timestamp)
        return JSONResponse(status_code=result.status_code, content=body.to_body())

    nodes = parse_gossip_response(result.data)
    body = ApiResponse(
        success=True,
        host=result.host,
        data={
            "nodes": [node.model_dump() for node in nodes],
            "metrics": calculate_metrics(nodes).model_dump(),
        },
        timestamp=result.timestamp,
    )
    return JSONResponse(content=body.to_body(), headers={"Cache-Control": CACHE_CONTROL})


@router.get("/api/node/{pubkey}")
async def node_detail(pubkey: str, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Details for one node; getNodeInfo is never served from cache."""
    result = await gateway.handle(RpcRequest(method="getNodeInfo", params=[pubkey]))
    if isinstance(result, RpcFailure):
        body = ApiResponse(
            success=False, error="Failed to fetch node details", timestamp=result.timestamp
        )
        return JSONResponse(status_code=result.status_code, content=body.to_body())

    node = result.data.get("result") if isinstance(result.data, dict) else None
    if not isinstance(node, dict):
        body = ApiResponse(
            success=False, error=f"Node not found: {pubkey}", timestamp=result.timestamp
        )
        return JSONResponse(status_code=404, content=body.to_body())

    try:
        detail = format_node_detail(node)
    except ValidationError as e:
        logger.warning(
            f"Malformed getNodeInfo result for {pubkey}",
            host=result.host,
            metadata={"errors": e.error_count()},
        )
        body = ApiResponse(
            success=False,
            error="Invalid node details",
            host=result.host,
            timestamp=result.timestamp,
        )
        return JSONResponse(status_code=502, content=body.to_body())

    body = ApiResponse(
        success=True,
        host=result.host,
        data=detail.model_dump(),
        timestamp=result.timestamp,
    )
    return JSONResponse(
        content=body.to_body(),
        headers={"Cache-Control": "public, s-maxage=30, stale-while-revalidate=60"},
    )


@router.get("/metrics")
def get_metrics_endpoint(gateway: Gateway = Depends(get_gateway)):
    """In-process metrics plus cache occupancy."""
    return {**gateway.metrics.get_all_metrics(), "gateway": gateway.describe()}


def create_app(
    config: Optional[GatewayConfig] = None, gateway: Optional[Gateway] = None
) -> FastAPI:
    """Build the application around one Gateway resolved from config."""
    config = config or (gateway.config if gateway else load_config())
    gateway = gateway or Gateway(config)

    configure_logging(LogLevel(config.log_level), enable_debug=config.debug)

    app = FastAPI(title="pRPC Gateway")
    app.state.config = config
    app.state.gateway = gateway

    add_logging_middleware(app, exclude_paths=["/health", "/metrics", "/favicon.ico"])
    app.add_exception_handler(GatewayError, handle_gateway_error)
    app.include_router(router)

    if gateway.plan.config_error is not None:
        logger.error(
            f"No usable upstream: {gateway.plan.config_error.message}",
            event_type=EventType.CONFIG_ERROR,
        )
    logger.log_event(
        EventType.GATEWAY_START,
        "pRPC gateway starting up",
        metadata={
            "mode": gateway.plan.mode,
            "hosts": list(gateway.plan.hosts),
            "timeout_seconds": gateway.plan.timeout_seconds,
            "cache_ttl_seconds": config.cache_ttl_seconds,
        },
    )
    return app


app = create_app()


def run() -> None:
    import uvicorn

    config = app.state.config
    uvicorn.run(app, host=config.host, port=config.port)
