"""
Tests for the Socket routing client.
"""

import httpx
import pytest
from eth_utils import to_checksum_address

from conftest import BRIDGE_IMPL, RECIPIENT, socket_transport
from sedn.core.errors import RoutingApiError
from sedn.providers.socket import SocketProvider, decode_user_request

USDC_POLYGON = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
USDC_ARBITRUM = "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8"
SEDN = "0x579e9809c0e06711a815698ebcd38b210621760a"


def provider(transport):
    return SocketProvider(api_key="test-key", base_url="https://socket.test/", client=httpx.AsyncClient(transport=transport))


async def get_route(socket, amount=1_000_000):
    return await socket.get_route(
        from_chain_id=137,
        from_token_address=USDC_POLYGON,
        to_chain_id=42161,
        to_token_address=USDC_ARBITRUM,
        amount=amount,
        user_address=SEDN,
        recipient=RECIPIENT,
    )


class TestGetRoute:
    @pytest.mark.asyncio
    async def test_quotes_builds_and_decodes(self):
        seen = []
        route = await get_route(provider(socket_transport(seen=seen)))

        assert route.bridge_impl == to_checksum_address(BRIDGE_IMPL)
        assert route.user_request.receiver_address == RECIPIENT
        assert route.user_request.to_chain_id == 42161
        assert route.user_request.amount == 1_000_000
        assert route.user_request.bridge_request.id == 12
        assert route.from_amount == 1_000_000
        assert route.to_amount == 999_000

        quote, build = seen
        assert quote.method == "GET"
        assert quote.url.path == "/v2/quote"
        assert quote.url.params["singleTxOnly"] == "true"
        assert quote.url.params["sort"] == "output"
        assert build.method == "POST"
        assert build.headers["API-KEY"] == "test-key"

    @pytest.mark.asyncio
    async def test_first_route_is_used(self):
        routes = [
            {"fromAmount": "5", "toAmount": "4", "recipient": RECIPIENT, "toChainId": "42161", "usedBridgeNames": ["hop"]},
            {"fromAmount": "6", "toAmount": "5", "recipient": RECIPIENT, "toChainId": "42161", "usedBridgeNames": ["cctp"]},
        ]
        route = await get_route(provider(socket_transport(routes=routes)), amount=5)
        assert route.route["usedBridgeNames"] == ["hop"]
        assert route.user_request.amount == 5

    @pytest.mark.asyncio
    async def test_no_routes(self):
        with pytest.raises(RoutingApiError):
            await get_route(provider(socket_transport(routes=[])))

    @pytest.mark.asyncio
    async def test_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"message": "down"}))
        with pytest.raises(RoutingApiError) as exc_info:
            await get_route(provider(transport))
        assert exc_info.value.context.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_reported_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False, "message": "bad token"}))
        with pytest.raises(RoutingApiError):
            await get_route(provider(transport))

    @pytest.mark.asyncio
    async def test_missing_approval_data(self):
        def handler(request):
            if request.url.path == "/v2/quote":
                return httpx.Response(200, json={"success": True, "result": {"routes": [{"fromAmount": "1"}]}})
            return httpx.Response(200, json={"success": True, "result": {"txData": "0x"}})

        with pytest.raises(RoutingApiError):
            await get_route(provider(httpx.MockTransport(handler)))


def test_decode_rejects_other_calldata():
    with pytest.raises(RoutingApiError):
        decode_user_request("0xa9059cbb" + "00" * 64)
