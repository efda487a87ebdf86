"""
Read-only views over the token, Sedn and forwarder contracts.
"""

from typing import Any, Dict

from eth_utils import to_checksum_address

from ..errors import ConfigurationError, TransactionRevertedError
from .abi import decode_result, encode_call
from .rpc import RpcClient


class _ContractView:
    def __init__(self, rpc: RpcClient, address: str):
        self.rpc = rpc
        self.address = to_checksum_address(address)

    async def _read(self, name: str, types, args, returns) -> Any:
        data = encode_call(name, types, args)
        raw = await self.rpc.eth_call(self.address, data)
        if not raw or raw == "0x":
            raise ConfigurationError(
                f"{name} returned no data from {self.address}; is the contract deployed?",
                chain_id=self.rpc.chain_id,
            )
        return decode_result(returns, raw)[0]


class TokenContract(_ContractView):
    """ERC-20 stablecoin."""

    async def balance_of(self, owner: str) -> int:
        return await self._read("balanceOf", ("address",), (owner,), ("uint256",))

    async def allowance(self, owner: str, spender: str) -> int:
        return await self._read("allowance", ("address", "address"), (owner, spender), ("uint256",))

    async def decimals(self) -> int:
        return await self._read("decimals", (), (), ("uint8",))


class SednContract(_ContractView):
    """In-protocol balance ledger and claim verifier nonce."""

    async def balance_of(self, owner: str) -> int:
        return await self._read("balanceOf", ("address",), (owner,), ("uint256",))

    async def nonce(self) -> int:
        return await self._read("nonce", (), (), ("uint256",))


class ForwarderContract(_ContractView):
    """Meta-transaction forwarder."""

    async def get_nonce(self, owner: str) -> int:
        """Current forwarder nonce for ``owner``. Never cached by callers.

        A revert or an empty result means no forwarder is deployed at the
        address. Transport and node errors propagate as ``RpcError``.
        """
        try:
            return await self._read("getNonce", ("address",), (owner,), ("uint256",))
        except TransactionRevertedError as exc:
            raise ConfigurationError(
                f"Forwarder {self.address} did not answer getNonce; is it deployed?",
                chain_id=self.rpc.chain_id,
            ) from exc

    async def verify(self, request: Dict[str, Any], signature: str, types) -> bool:
        """Call ``verify(ForwardRequest, bytes)`` with the schema's field types."""
        request_type = "(" + ",".join(types) + ")"
        return await self._read(
            "verify",
            (request_type, "bytes"),
            (tuple(request.values()), signature),
            ("bool",),
        )
