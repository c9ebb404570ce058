import httpx
import respx
from fastapi.testclient import TestClient

from prpc_gateway.app import create_app
from prpc_gateway.config import GatewayConfig

PROXY = "http://proxy.local/prpc"
NODE = "http://node-a.local:6000/rpc"
GOSSIP = {"jsonrpc": "2.0", "result": [{"pubkey": "abc"}], "id": "prpc-gateway"}


def build_client(**overrides) -> TestClient:
    overrides.setdefault("proxy_url", PROXY)
    overrides.setdefault("proxy_api_key", "s3cret")
    return TestClient(create_app(GatewayConfig(**overrides)))


def test_proxy_envelope_is_unwrapped():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        route = mock.post(PROXY).respond(200, json={"ok": True, "host": NODE, "data": GOSSIP})

        resp = client.get("/api/prpc")

    assert resp.status_code == 200
    body = resp.json()
    assert body["host"] == NODE
    assert body["data"] == GOSSIP
    assert body["proxy"] == PROXY
    assert route.calls.last.request.headers["x-api-key"] == "s3cret"


def test_proxy_failure_is_502():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.post(PROXY).mock(side_effect=httpx.ConnectError)

        resp = client.get("/api/prpc")

    assert resp.status_code == 502
    body = resp.json()
    assert body["error"] == "Failed to contact pRPC proxy"
    assert body["detail"].startswith("network error")


def test_proxy_health_probe_surfaces_raw_answer():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.get(f"{PROXY}/health").respond(200, text='{"status":"ok"}')

        resp = client.get("/api/prpc/test")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["selectedProxyUrl"] == PROXY
    assert body["testHealthEndpoint"] == {"status": 200, "body": '{"status":"ok"}'}


def test_proxy_health_probe_unreachable_is_502():
    client = build_client()

    with respx.mock(assert_all_called=True) as mock:
        mock.get(f"{PROXY}/health").mock(side_effect=httpx.ConnectError)

        resp = client.get("/api/prpc/test")

    assert resp.status_code == 502
    assert resp.json()["ok"] is False


def test_health_probe_without_proxy_is_400():
    client = TestClient(create_app(GatewayConfig(fallback_endpoints=[NODE])))

    resp = client.get("/api/prpc/test")

    assert resp.status_code == 400
    assert resp.json()["error"] == "Proxy URL not configured"


class TestSharedSecret:
    """The standalone proxy entry point checks x-api-key before any upstream dial."""

    def build(self):
        return TestClient(
            create_app(GatewayConfig(fallback_endpoints=[NODE], api_key="s3cret"))
        )

    def test_missing_key_is_rejected_before_upstream_call(self):
        client = self.build()

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(NODE).respond(200, json=GOSSIP)

            resp = client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "getGossipNodes"})

        assert resp.status_code == 401
        assert resp.json()["ok"] is False
        assert resp.json()["error"] == "Unauthorized"
        assert not route.called

    def test_wrong_key_is_rejected(self):
        client = self.build()

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(NODE).respond(200, json=GOSSIP)

            resp = client.get("/", headers={"x-api-key": "guess"})

        assert resp.status_code == 401
        assert not route.called

    def test_matching_key_is_forwarded(self):
        client = self.build()

        with respx.mock(assert_all_called=True) as mock:
            mock.post(NODE).respond(200, json=GOSSIP)

            resp = client.post(
                "/",
                json={"jsonrpc": "2.0", "id": 1, "method": "getGossipNodes", "params": []},
                headers={"x-api-key": "s3cret"},
            )

        assert resp.status_code == 200
        assert resp.json()["host"] == NODE

    def test_dashboard_route_does_not_check_inbound_key(self):
        client = self.build()

        with respx.mock(assert_all_called=True) as mock:
            mock.post(NODE).respond(200, json=GOSSIP)

            resp = client.get("/api/prpc")

        assert resp.status_code == 200


def test_no_secret_configured_leaves_entry_point_open():
    client = TestClient(create_app(GatewayConfig(fallback_endpoints=[NODE])))

    with respx.mock(assert_all_called=True) as mock:
        mock.post(NODE).respond(200, json=GOSSIP)

        resp = client.get("/", params={"method": "getGossipNodes"})

    assert resp.status_code == 200
