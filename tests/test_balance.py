"""Balance collaborators: static table and Hive Engine JSON-RPC client with failover."""

import json
from decimal import Decimal

import httpx
import pytest

from predbites.collaborators.balance import (
    HiveEngineBalanceClient,
    StaticBalanceProvider,
    build_balance_provider,
    parse_quantity,
)
from predbites.collaborators.rate_limit import TokenBucket, backoff_delay
from predbites.config import Settings
from predbites.errors import UpstreamError


def _client(handler, nodes=("https://node-a", "https://node-b"), **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return HiveEngineBalanceClient(list(nodes), retry_delay_sec=0, requests_per_sec=1000, client=http, **kwargs)


def test_static_provider():
    provider = StaticBalanceProvider({"alice": 12.5})
    assert provider.get_balance("alice") == Decimal("12.5")
    assert provider.get_balance("nobody") == Decimal("0")
    provider.set_balance("nobody", "3")
    assert provider.get_balance("nobody") == Decimal("3")


def test_parse_quantity():
    assert parse_quantity("123.456") == Decimal("123.456")
    assert parse_quantity(None) == Decimal("0")
    assert parse_quantity("junk") == Decimal("0")


def test_find_one_request_shape():
    seen = []

    def handler(request):
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"account": "alice", "balance": "250.125"}})

    client = _client(handler)
    assert client.get_balance("alice") == Decimal("250.125")
    url, body = seen[0]
    assert url == "https://node-a/contracts"
    assert body["method"] == "findOne"
    assert body["params"] == {
        "contract": "tokens",
        "table": "balances",
        "query": {"account": "alice", "symbol": "MEDALS"},
    }


def test_missing_account_has_zero_balance():
    client = _client(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None}))
    assert client.get_balance("ghost") == Decimal("0")


def test_fails_over_to_next_node():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "node-a":
            return httpx.Response(503)
        return httpx.Response(200, json={"result": {"balance": "10"}})

    client = _client(handler)
    assert client.get_balance("alice") == Decimal("10")
    assert hosts == ["node-a", "node-b"]


def test_rpc_error_retried_then_upstream_error():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        return httpx.Response(200, json={"error": {"message": "contract not found"}})

    client = _client(handler, max_retries=3)
    with pytest.raises(UpstreamError) as exc:
        client.get_balance("alice")
    assert calls == ["node-a", "node-b", "node-a"]
    assert exc.value.status_code == 502


def test_build_balance_provider():
    static = build_balance_provider(Settings(balances={"provider": "static", "static": {"bob": 7}}))
    assert static.get_balance("bob") == Decimal("7")
    remote = build_balance_provider(Settings(balances={"provider": "hive_engine"}))
    assert isinstance(remote, HiveEngineBalanceClient)
    remote.close()
    with pytest.raises(ValueError):
        build_balance_provider(Settings(balances={"provider": "carrier-pigeon"}))


def test_token_bucket_waits_for_refill():
    now = [0.0]
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        now[0] += seconds

    bucket = TokenBucket(rate=2.0, capacity=2, clock=lambda: now[0], sleep=sleep)
    assert bucket.consume()
    assert bucket.consume()
    assert not bucket.consume()
    assert bucket.wait_for_token() == pytest.approx(0.5)
    assert slept == [pytest.approx(0.5)]


def test_backoff_delay_doubles_and_caps():
    assert [backoff_delay(i, 0.5) for i in range(3)] == [0.5, 1.0, 2.0]
    assert backoff_delay(10, 1.0, max_delay=5.0) == 5.0
