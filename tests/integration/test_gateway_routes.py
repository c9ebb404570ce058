import httpx
import respx
from fastapi.testclient import TestClient

from prpc_gateway.app import create_app
from prpc_gateway.config import GatewayConfig

NODE_A = "http://node-a.local:6000/rpc"
NODE_B = "http://node-b.local:6000/rpc"
GOSSIP = {
    "jsonrpc": "2.0",
    "result": [{"pubkey": "abc", "gossip": "1.2.3.4:8001", "version": "1.0", "latency": 10}],
    "id": "x",
}


def build_client(**overrides) -> TestClient:
    overrides.setdefault("fallback_endpoints", [NODE_A, NODE_B])
    return TestClient(create_app(GatewayConfig(**overrides)))


def test_empty_params_scenario():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(NODE_A).respond(200, json=GOSSIP)

        resp = client.get("/api/prpc", params={"method": "getGossipNodes", "params": "[]"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["host"] == NODE_A
    assert body["data"] == GOSSIP
    assert "timestamp" in body
    assert resp.headers["cache-control"] == "public, s-maxage=60, stale-while-revalidate=120"
    assert route.call_count == 1


def test_second_request_is_served_from_cache():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(NODE_A).respond(200, json=GOSSIP)

        first = client.get("/api/prpc")
        second = client.get("/api/prpc")

    assert first.json()["host"] == NODE_A
    assert second.status_code == 200
    assert second.json()["host"] == "cache"
    assert second.json()["data"] == GOSSIP
    assert route.call_count == 1


def test_failover_to_second_host():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE_A).respond(503)
        mock.post(NODE_B).respond(200, json=GOSSIP)

        resp = client.post(
            "/api/prpc", json={"jsonrpc": "2.0", "id": 1, "method": "getGossipNodes"}
        )

    assert resp.status_code == 200
    assert resp.json()["host"] == NODE_B


def test_post_body_is_forwarded_with_caller_id():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(NODE_A).respond(200, json={"jsonrpc": "2.0", "result": {}, "id": 99})

        client.post(
            "/api/prpc",
            json={"jsonrpc": "2.0", "id": 99, "method": "getNodeInfo", "params": ["abc"]},
        )

    sent = route.calls.last.request
    assert b'"id":99' in sent.content.replace(b" ", b"")
    assert b'"getNodeInfo"' in sent.content


def test_all_hosts_failing_returns_503_with_attempts():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE_A).mock(side_effect=httpx.ConnectError)
        mock.post(NODE_B).respond(500)

        resp = client.get("/api/prpc")

    assert resp.status_code == 503
    body = resp.json()
    assert body["ok"] is False
    assert body["error"] == "All pRPC hosts failed"
    assert body["lastHost"] == NODE_B
    assert [a["host"] for a in body["attempts"]] == [NODE_A, NODE_B]
    assert body["attempts"][1]["error"] == "HTTP 500"


def test_malformed_params_is_400_without_upstream_call():
    client = build_client()

    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(NODE_A).respond(200, json=GOSSIP)

        resp = client.get("/api/prpc", params={"params": "[not json"})

    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert resp.json()["error"] == "Invalid params"
    assert not route.called


def test_malformed_body_is_400():
    client = build_client()

    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(NODE_A).respond(200, json=GOSSIP)

        bad_json = client.post(
            "/api/prpc", content=b"{oops", headers={"content-type": "application/json"}
        )
        no_method = client.post("/api/prpc", json={"jsonrpc": "2.0", "params": []})

    assert bad_json.status_code == 400
    assert bad_json.json()["error"] == "Invalid request body"
    assert no_method.status_code == 400
    assert no_method.json()["error"] == "Invalid JSON-RPC body"
    assert not route.called


def test_no_configured_hosts_is_400():
    client = build_client(fallback_endpoints=[])

    resp = client.get("/api/prpc")

    assert resp.status_code == 400
    assert resp.json()["error"] == "No upstream hosts configured"


def test_require_proxy_without_proxy_url_is_400():
    client = build_client(require_proxy=True)

    resp = client.get("/api/prpc")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Proxy URL not configured"
    assert body["proxyConfigError"]


def test_request_id_header_is_propagated():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE_A).respond(200, json=GOSSIP)

        resp = client.get("/api/prpc", headers={"x-request-id": "req_test123"})

    assert resp.headers["x-request-id"] == "req_test123"


def test_health_reports_mode_and_hosts():
    client = build_client()

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "hosts": 2, "mode": "direct"}


def test_metrics_endpoint_includes_gateway_state():
    client = build_client()

    resp = client.get("/metrics")

    assert resp.status_code == 200
    body = resp.json()
    assert "counters" in body
    assert body["gateway"]["mode"] == "direct"
    assert body["gateway"]["cache"]["ttl_seconds"] == 60


def test_non_standard_json_params_is_400_without_upstream_call():
    client = build_client()

    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(NODE_A).respond(200, json=GOSSIP)

        query = client.get("/api/prpc", params={"method": "getNodeInfo", "params": "[NaN]"})
        body = client.post(
            "/api/prpc",
            content=b'{"jsonrpc": "2.0", "method": "getNodeInfo", "params": [Infinity]}',
            headers={"content-type": "application/json"},
        )

    assert query.status_code == 400
    assert query.json()["error"] == "Invalid params"
    assert body.status_code == 400
    assert body.json()["error"] == "Invalid request body"
    assert not route.called


def test_upstream_answering_nan_fails_over_to_next_host():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE_A).respond(
            200, text='{"jsonrpc":"2.0","result":[{"latency":NaN}],"id":"x"}'
        )
        mock.post(NODE_B).respond(200, json=GOSSIP)

        resp = client.get("/api/prpc", params={"method": "getNodeInfo"})

    assert resp.status_code == 200
    assert resp.json()["host"] == NODE_B
    assert resp.json()["data"] == GOSSIP


def test_every_upstream_answering_nan_is_503():
    client = build_client()
    nan_body = '{"jsonrpc":"2.0","result":[{"latency":NaN}],"id":"x"}'

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE_A).respond(200, text=nan_body)
        mock.post(NODE_B).respond(200, text=nan_body)

        resp = client.get("/api/prpc")

    assert resp.status_code == 503
    assert all(a["error"].startswith("invalid JSON") for a in resp.json()["attempts"])
