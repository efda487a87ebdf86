"""
Tests for the relay webhook client.
"""

import json

import httpx
import pytest

from sedn.core.errors import ForwarderRejectedError, RelayError, RelayTransportError
from sedn.providers.defender import DefenderRelayProvider

WEBHOOK = "https://relay.test/polygon"
PAYLOAD = {"request": {"from": "0xabc", "nonce": "0"}, "signature": "0x00"}


def provider(handler, retries=2):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DefenderRelayProvider(retries=retries, backoff_s=0, client=client)


class TestDefenderRelayProvider:
    @pytest.mark.asyncio
    async def test_returns_tx_hash_from_json_result(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "success", "result": json.dumps({"txHash": "0xfeed"})})

        assert await provider(handler).relay(WEBHOOK, PAYLOAD) == "0xfeed"
        assert seen == [PAYLOAD]

    @pytest.mark.asyncio
    async def test_accepts_object_result(self):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "result": {"txHash": "0xbeef"}})

        assert await provider(handler).relay(WEBHOOK, PAYLOAD) == "0xbeef"

    @pytest.mark.asyncio
    async def test_server_errors_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(200, json={"status": "success", "result": '{"txHash": "0x1"}'})

        assert await provider(handler).relay(WEBHOOK, PAYLOAD) == "0x1"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(RelayTransportError):
            await provider(handler, retries=1).relay(WEBHOOK, PAYLOAD)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_connection_errors_retried(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RelayTransportError):
            await provider(handler, retries=0).relay(WEBHOOK, PAYLOAD)

    @pytest.mark.asyncio
    async def test_forwarder_rejection_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"status": "error", "message": "MinimalForwarder: signature does not match request"})

        with pytest.raises(ForwarderRejectedError):
            await provider(handler).relay(WEBHOOK, PAYLOAD)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_tx_hash(self):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "result": "{}"})

        with pytest.raises(RelayError):
            await provider(handler).relay(WEBHOOK, PAYLOAD)

    @pytest.mark.asyncio
    async def test_other_client_error(self):
        def handler(request):
            return httpx.Response(404, json={"message": "no such autotask"})

        with pytest.raises(RelayError):
            await provider(handler).relay(WEBHOOK, PAYLOAD)
