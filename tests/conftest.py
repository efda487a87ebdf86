"""
Shared fixtures: a small in-memory chain, relay and routing API.
"""

import json
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
import pytest
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from sedn.core.chain_types import ARBITRUM, POLYGON
from sedn.core.errors import ForwarderRejectedError
from sedn.core.execution.abi import USER_REQUEST_TYPE, encode_call, function_signature, selector
from sedn.core.networks import DEFAULT_NETWORKS, FeeOracleKind, NetworkRegistry
from sedn.providers.fees import FeeSuggestion


# Hardhat development accounts
SENDER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
RECIPIENT_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
VERIFIER_KEY = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"
VERIFIER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

WEBHOOKS = {
    POLYGON: "https://relay.test/polygon",
    ARBITRUM: "https://relay.test/arbitrum",
}


def _sel(name: str, *types: str) -> str:
    return "0x" + selector(function_signature(name, types)).hex()


def _uint(value: int) -> str:
    return "0x" + abi_encode(["uint256"], [value]).hex()


class FakeChain:
    """Answers the JSON-RPC calls the execution core makes against one chain."""

    GET_NONCE = _sel("getNonce", "address")
    BALANCE_OF = _sel("balanceOf", "address")
    ALLOWANCE = _sel("allowance", "address", "address")
    SEDN_NONCE = _sel("nonce")

    def __init__(self, network):
        self.network = network
        self.chain_id = network.chain_id
        self.forwarder_nonces: Dict[str, int] = {}
        self.token_balances: Dict[str, int] = {}
        self.sedn_balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.sedn_nonce = 0
        self.timestamp = 1_700_000_000
        self.pending: Set[str] = set()
        self.reverted: Set[str] = set()
        self.raw_transactions: List[str] = []
        self.receipt_lookups = 0

    # contract reads
    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        head, body = data[:10], bytes.fromhex(data[10:])
        if head == self.GET_NONCE:
            (owner,) = abi_decode(["address"], body)
            return _uint(self.forwarder_nonces.get(owner.lower(), 0))
        if head == self.BALANCE_OF:
            (owner,) = abi_decode(["address"], body)
            book = self.sedn_balances if to.lower() == self.network.sedn_address.lower() else self.token_balances
            return _uint(book.get(owner.lower(), 0))
        if head == self.ALLOWANCE:
            owner, spender = abi_decode(["address", "address"], body)
            return _uint(self.allowances.get((owner.lower(), spender.lower()), 0))
        if head == self.SEDN_NONCE:
            return _uint(self.sedn_nonce)
        return "0x"

    async def latest_timestamp(self) -> int:
        return self.timestamp

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        self.receipt_lookups += 1
        if tx_hash in self.pending:
            return None
        logs = [] if tx_hash in self.reverted else [{"address": self.network.sedn_address, "topics": []}]
        return {
            "transactionHash": tx_hash,
            "status": "0x1",
            "blockNumber": "0x10",
            "gasUsed": "0x5208",
            "logs": logs,
        }

    # direct submission
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return 50_000

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return len(self.raw_transactions)

    async def send_raw_transaction(self, raw: str) -> str:
        self.raw_transactions.append(raw)
        return "0x" + keccak(hexstr=raw).hex()


class FakeRelay:
    """Relay webhook that executes requests against FakeChains in nonce order."""

    def __init__(self, chains: Dict[int, FakeChain]):
        self._by_webhook = {WEBHOOKS[c]: chain for c, chain in chains.items() if c in WEBHOOKS}
        self.payloads: List[Dict[str, Any]] = []
        self.reject_next: Optional[str] = None

    async def relay(self, webhook_url: str, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if self.reject_next is not None:
            message, self.reject_next = self.reject_next, None
            raise ForwarderRejectedError(message)

        chain = self._by_webhook[webhook_url]
        request = payload["request"]
        sender = request["from"].lower()
        expected = chain.forwarder_nonces.get(sender, 0)
        if int(request["nonce"]) != expected:
            raise ForwarderRejectedError(f"Forwarder rejected request: invalid nonce {request['nonce']}")
        chain.forwarder_nonces[sender] = expected + 1
        return relay_tx_hash(chain.chain_id, sender, expected)


class FakeRpcPool:
    def __init__(self, chains: Dict[int, FakeChain]):
        self.chains = chains

    def for_chain(self, chain_id: int) -> FakeChain:
        return self.chains[chain_id]


class FakeFeeOracle:
    async def suggest(self, network, rpc) -> FeeSuggestion:
        return FeeSuggestion(max_fee_per_gas=100 * 10**9, max_priority_fee_per_gas=30 * 10**9)


@pytest.fixture
def networks() -> NetworkRegistry:
    registry = NetworkRegistry(DEFAULT_NETWORKS)
    for chain_id, webhook in WEBHOOKS.items():
        registry = registry.with_overrides(
            chain_id,
            rpc_url=f"https://rpc.test/{chain_id}",
            relayer_webhook=webhook,
            fee_oracle=FeeOracleKind.NODE,
        )
    return registry


@pytest.fixture
def chains(networks) -> Dict[int, FakeChain]:
    return {chain_id: FakeChain(networks.require(chain_id)) for chain_id in WEBHOOKS}


@pytest.fixture
def rpc_pool(chains) -> FakeRpcPool:
    return FakeRpcPool(chains)


@pytest.fixture
def relay(chains) -> FakeRelay:
    return FakeRelay(chains)


def user_request_calldata(receiver: str, to_chain_id: int, amount: int) -> str:
    """outboundTransferTo calldata as returned by the routing API's build-tx."""
    user_request = (
        receiver,
        to_chain_id,
        amount,
        (0, 0, "0x0000000000000000000000000000000000000000", "0x"),
        (12, 0, "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "0x" + "ab" * 32),
    )
    return encode_call("outboundTransferTo", (USER_REQUEST_TYPE,), [user_request])


BRIDGE_IMPL = "0xc30141b657f4216252dc59af2e7cdb9d8792e1b0"


def socket_transport(
    *,
    receiver: Optional[str] = None,
    to_chain_id: Optional[int] = None,
    amount: Optional[int] = None,
    routes: Optional[List[Dict[str, Any]]] = None,
    seen: Optional[List[httpx.Request]] = None,
) -> httpx.MockTransport:
    """Routing API stub. ``receiver``/``to_chain_id``/``amount`` default to the quoted values."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/v2/quote":
            params = request.url.params
            quoted = {
                "fromAmount": params["fromAmount"],
                "toAmount": str(int(params["fromAmount"]) - 1000),
                "usedBridgeNames": ["hop"],
                "recipient": params["recipient"],
                "toChainId": params["toChainId"],
            }
            return httpx.Response(200, json={"success": True, "result": {"routes": routes if routes is not None else [quoted]}})
        if request.url.path == "/v2/build-tx":
            route = json.loads(request.content)["route"]
            calldata = user_request_calldata(
                to_checksum_address(receiver or route["recipient"]),
                to_chain_id if to_chain_id is not None else int(route["toChainId"]),
                amount if amount is not None else int(route["fromAmount"]),
            )
            return httpx.Response(200, json={
                "success": True,
                "result": {
                    "txTarget": "0x2ddf16ba6d0180e5357d5e170ef1917a01b41fc0",
                    "txData": calldata,
                    "value": "0x0",
                    "approvalData": {"allowanceTarget": BRIDGE_IMPL, "minimumApprovalAmount": route["fromAmount"]},
                },
            })
        return httpx.Response(404, json={"success": False, "message": "not found"})

    return httpx.MockTransport(handler)


class FakeClock:
    """Millisecond clock that only moves when ``sleep`` is awaited."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds * 1000


def relay_tx_hash(chain_id: int, sender: str, nonce: int) -> str:
    """Hash FakeRelay returns for a request."""
    return "0x" + keccak(text=f"{chain_id}:{sender.lower()}:{nonce}").hex()
