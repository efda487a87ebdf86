"""
Tests for RpcClient and RpcPool.
"""

import json

import httpx
import pytest

from sedn.core.errors import ConfigurationError, RpcError, TransactionRevertedError
from sedn.core.execution.rpc import RpcClient, RpcPool
from sedn.core.networks import DEFAULT_NETWORKS, NetworkRegistry


def make_client(handler, retries: int = 2) -> RpcClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RpcClient("https://rpc.test", chain_id=137, client=client, retries=retries, backoff_s=0)


class TestRpcClient:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        seen = []

        def handler(request):
            body = json.loads(request.content)
            seen.append(body)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x5208"})

        rpc = make_client(handler)
        assert await rpc.estimate_gas({"to": "0x0"}) == 21000
        assert seen[0]["method"] == "eth_estimateGas"
        await rpc.close()

    @pytest.mark.asyncio
    async def test_ids_increment(self):
        ids = []

        def handler(request):
            body = json.loads(request.content)
            ids.append(body["id"])
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x1"})

        rpc = make_client(handler)
        await rpc.get_transaction_count("0x0")
        await rpc.get_transaction_count("0x0")
        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_latest_timestamp(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"timestamp": "0x6553f100"}})

        assert await make_client(handler).latest_timestamp() == 0x6553F100

    @pytest.mark.asyncio
    async def test_revert_error(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": 3, "message": "execution reverted: Secret already used", "data": "0x08c379a0"},
            })

        with pytest.raises(TransactionRevertedError) as exc_info:
            await make_client(handler).eth_call("0x0", "0x")
        assert exc_info.value.reason == "Secret already used"
        assert exc_info.value.context.chain_id == 137

    @pytest.mark.asyncio
    async def test_node_error(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "header not found"}})

        with pytest.raises(RpcError):
            await make_client(handler).get_block()

    @pytest.mark.asyncio
    async def test_transport_error_is_recoverable(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(RpcError) as exc_info:
            await make_client(handler).get_transaction_receipt("0xabc")
        assert exc_info.value.recoverable

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        responses = [
            httpx.ConnectError("connection refused"),
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x2a"}),
        ]
        calls = []

        def handler(request):
            calls.append(request)
            outcome = responses[len(calls) - 1]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert await make_client(handler).get_transaction_count("0x0") == 42
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="rate limited")

        with pytest.raises(RpcError):
            await make_client(handler, retries=1).get_block()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_backoff_doubles(self):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
        rpc = RpcClient("https://rpc.test", client=client, retries=3, backoff_s=0.5, sleep=sleep)
        with pytest.raises(RpcError):
            await rpc.get_block()
        assert sleeps == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_html_body_is_rpc_error(self):
        def handler(request):
            return httpx.Response(200, text="<html>bad gateway</html>")

        with pytest.raises(RpcError) as exc_info:
            await make_client(handler).get_transaction_receipt("0xabc")
        assert exc_info.value.recoverable
        assert exc_info.value.context.chain_id == 137

    @pytest.mark.asyncio
    async def test_non_object_body_is_rpc_error(self):
        def handler(request):
            return httpx.Response(200, json=[{"jsonrpc": "2.0", "id": 1, "result": "0x1"}])

        with pytest.raises(RpcError):
            await make_client(handler).eth_call("0x0", "0x")


class TestRpcPool:
    def test_requires_rpc_url(self):
        pool = RpcPool(NetworkRegistry(DEFAULT_NETWORKS))
        with pytest.raises(ConfigurationError):
            pool.for_chain(137)

    def test_caches_per_chain(self):
        registry = NetworkRegistry(DEFAULT_NETWORKS).with_overrides(137, rpc_url="https://rpc.test/137")
        pool = RpcPool(registry, client=httpx.AsyncClient())
        assert pool.for_chain(137) is pool.for_chain(137)
        assert pool.for_chain(137).chain_id == 137
