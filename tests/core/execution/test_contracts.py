"""
Tests for the forwarder contract view.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from eth_abi import encode as abi_encode

from conftest import SENDER
from sedn.core.errors import ConfigurationError, RpcError, TransactionRevertedError
from sedn.core.execution.contracts import ForwarderContract


FORWARDER = "0xc5babfd1c5ffda1f24b1fc21453692d8d9678a87"


def make_forwarder(**eth_call) -> ForwarderContract:
    rpc = MagicMock()
    rpc.chain_id = 137
    rpc.eth_call = AsyncMock(**eth_call)
    return ForwarderContract(rpc, FORWARDER)


class TestGetNonce:
    @pytest.mark.asyncio
    async def test_decodes_nonce(self):
        forwarder = make_forwarder(return_value="0x" + abi_encode(["uint256"], [7]).hex())
        assert await forwarder.get_nonce(SENDER) == 7

    @pytest.mark.asyncio
    async def test_empty_result_means_not_deployed(self):
        with pytest.raises(ConfigurationError):
            await make_forwarder(return_value="0x").get_nonce(SENDER)

    @pytest.mark.asyncio
    async def test_revert_means_not_deployed(self):
        forwarder = make_forwarder(side_effect=TransactionRevertedError("eth_call reverted", chain_id=137))
        with pytest.raises(ConfigurationError):
            await forwarder.get_nonce(SENDER)

    @pytest.mark.asyncio
    async def test_node_errors_stay_recoverable(self):
        forwarder = make_forwarder(side_effect=RpcError("RPC error from eth_call: rate limit exceeded", chain_id=137))
        with pytest.raises(RpcError) as exc_info:
            await forwarder.get_nonce(SENDER)
        assert exc_info.value.recoverable
