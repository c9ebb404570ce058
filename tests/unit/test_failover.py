import asyncio

import httpx
import pytest
import respx

from prpc_gateway.errors import ConfigurationError, UpstreamError
from prpc_gateway.failover import ALL_HOSTS_FAILED, DEADLINE_EXCEEDED, FailoverSequencer
from prpc_gateway.metrics import MetricNames, MetricsCollector
from prpc_gateway.models import RpcFailure, RpcRequest, RpcSuccess
from prpc_gateway.upstream import UpstreamClient

HOSTS = [
    "http://node-a.local:6000/rpc",
    "http://node-b.local:6000/rpc",
    "http://node-c.local:6000/rpc",
]
GOSSIP = {"jsonrpc": "2.0", "result": [{"pubkey": "abc"}], "id": "prpc-gateway"}


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def sequencer(metrics):
    return FailoverSequencer(UpstreamClient(), metrics=metrics)


@pytest.fixture
def rpc_request():
    return RpcRequest(method="getGossipNodes")


@pytest.mark.asyncio
async def test_first_success_stops_the_sequence(sequencer, rpc_request):
    with respx.mock(assert_all_called=False) as mock:
        first = mock.post(HOSTS[0]).respond(200, json=GOSSIP)
        second = mock.post(HOSTS[1]).respond(200, json=GOSSIP)
        third = mock.post(HOSTS[2]).respond(200, json=GOSSIP)

        result = await sequencer.attempt_all(HOSTS, rpc_request, timeout=5)

    assert isinstance(result, RpcSuccess)
    assert result.host == HOSTS[0]
    assert result.data == GOSSIP
    assert first.call_count == 1
    assert second.call_count == 0
    assert third.call_count == 0


@pytest.mark.parametrize("k", [2, 3])
@pytest.mark.asyncio
async def test_kth_host_success_after_failures(sequencer, rpc_request, metrics, k):
    with respx.mock(assert_all_called=False) as mock:
        routes = []
        for index, host in enumerate(HOSTS):
            if index < k - 1:
                routes.append(mock.post(host).respond(502))
            else:
                routes.append(mock.post(host).respond(200, json=GOSSIP))

        result = await sequencer.attempt_all(HOSTS, rpc_request, timeout=5)

    assert isinstance(result, RpcSuccess)
    assert result.host == HOSTS[k - 1]
    assert sum(route.call_count for route in routes) == k
    assert metrics.get_counter(MetricNames.FAILOVERS).count == k - 1


@pytest.mark.asyncio
async def test_all_hosts_failing_lists_every_attempt_in_order(sequencer, rpc_request, metrics):
    with respx.mock(assert_all_called=True) as mock:
        mock.post(HOSTS[0]).mock(side_effect=httpx.ConnectError)
        mock.post(HOSTS[1]).respond(500)
        mock.post(HOSTS[2]).respond(200, text="not json")

        result = await sequencer.attempt_all(
            HOSTS, rpc_request, timeout=5, failure_status=503
        )

    assert isinstance(result, RpcFailure)
    assert result.error == ALL_HOSTS_FAILED
    assert [a.host for a in result.attempts] == HOSTS
    assert result.attempts[0].error.startswith("network error")
    assert result.attempts[1].error == "HTTP 500"
    assert result.attempts[2].error.startswith("invalid JSON")
    assert result.last_host == HOSTS[2]
    assert result.detail == result.attempts[2].error
    assert result.status_code == 503
    assert metrics.get_counter(MetricNames.ALL_HOSTS_FAILED).count == 1
    assert (
        metrics.get_counter(
            MetricNames.UPSTREAM_FAILURES, host=HOSTS[1], labels={"reason": "http"}
        ).count
        == 1
    )


@pytest.mark.asyncio
async def test_same_request_is_forwarded_to_every_host(sequencer):
    request = RpcRequest(id=42, method="getNodeInfo", params=["abc"])
    with respx.mock(assert_all_called=True) as mock:
        a = mock.post(HOSTS[0]).respond(503)
        b = mock.post(HOSTS[1]).respond(200, json={"result": {"pubkey": "abc"}})

        await sequencer.attempt_all(HOSTS[:2], request, timeout=5)

    assert a.calls.last.request.content == b.calls.last.request.content


@pytest.mark.asyncio
async def test_hanging_host_times_out_and_sequence_moves_on(metrics, rpc_request):
    async def handler(request):
        if request.url.host == "node-a.local":
            await asyncio.sleep(30)
        return httpx.Response(200, json=GOSSIP)

    sequencer = FailoverSequencer(
        UpstreamClient(transport=httpx.MockTransport(handler)), metrics=metrics
    )

    result = await sequencer.attempt_all(HOSTS[:2], rpc_request, timeout=0.2)

    assert isinstance(result, RpcSuccess)
    assert result.host == HOSTS[1]


@pytest.mark.asyncio
async def test_empty_host_list_is_a_configuration_error(sequencer, rpc_request):
    with pytest.raises(ConfigurationError):
        await sequencer.attempt_all([], rpc_request, timeout=5)


class SlowFailingClient:
    """Each call costs `cost` seconds on the fake clock and then fails."""

    def __init__(self, clock, cost):
        self.clock = clock
        self.cost = cost
        self.timeouts = []

    async def call(self, endpoint, request, timeout, headers=None):
        self.timeouts.append(timeout)
        self.clock.now += self.cost
        raise UpstreamError(endpoint, "timeout")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_deadline_caps_per_host_timeouts(metrics, rpc_request):
    clock = FakeClock()
    client = SlowFailingClient(clock, cost=3)
    sequencer = FailoverSequencer(client, metrics=metrics, clock=clock)

    result = await sequencer.attempt_all(
        HOSTS, rpc_request, timeout=5, deadline_seconds=5, failure_status=503
    )

    assert client.timeouts == [5, 2]
    assert isinstance(result, RpcFailure)
    assert result.error == DEADLINE_EXCEEDED
    assert [a.host for a in result.attempts] == HOSTS[:2]
    assert result.last_host == HOSTS[1]
    assert result.status_code == 503


@pytest.mark.asyncio
async def test_without_deadline_every_host_gets_full_timeout(metrics, rpc_request):
    clock = FakeClock()
    client = SlowFailingClient(clock, cost=5)
    sequencer = FailoverSequencer(client, metrics=metrics, clock=clock)

    result = await sequencer.attempt_all(HOSTS, rpc_request, timeout=5)

    assert client.timeouts == [5, 5, 5]
    assert result.error == ALL_HOSTS_FAILED
    assert clock.now == 15


@pytest.mark.asyncio
async def test_host_answering_nan_is_skipped(sequencer, rpc_request):
    with respx.mock(assert_all_called=True) as mock:
        mock.post(HOSTS[0]).respond(
            200, text='{"jsonrpc":"2.0","result":[{"latency":NaN}],"id":"x"}'
        )
        mock.post(HOSTS[1]).respond(200, json=GOSSIP)

        result = await sequencer.attempt_all(HOSTS[:2], rpc_request, timeout=5)

    assert isinstance(result, RpcSuccess)
    assert result.host == HOSTS[1]
    assert result.data == GOSSIP
