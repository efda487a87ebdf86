"""
Relay client.

Gasless path: POST the signed forward request to the network's relay
webhook and surface the relayed tx hash. Direct path: the sender signs
and broadcasts an EIP-1559 transaction, paying gas.
"""

import logging
from typing import Optional

from ...config import settings
from ...providers.defender import DefenderRelayProvider
from ...providers.fees import FeeOracle
from ..errors import ForwarderRejectedError
from ..networks import NetworkConfig
from .abi import encode_method
from .contracts import ForwarderContract
from .models import DescriptorStatus, SignedRequest, TransactionDescriptor
from .rpc import RpcClient
from .signer import Signer
from .signing import forward_request_types

logger = logging.getLogger(__name__)

RELAY_GAS_MARGIN = 1_000_000
DIRECT_GAS_MULTIPLIER = 1.1


def relay_gas_limit(request: SignedRequest, margin: int = RELAY_GAS_MARGIN) -> int:
    """Gas limit the relay uses when executing ``request`` on the forwarder."""
    return request.gas + margin


class RelayClient:
    """Submits descriptors either through the relay webhook or directly."""

    def __init__(
        self,
        *,
        relay_provider: Optional[DefenderRelayProvider] = None,
        fee_oracle: Optional[FeeOracle] = None,
        preflight_verify: bool = False,
        gas_margin: Optional[int] = None,
    ):
        self.relay_provider = relay_provider or DefenderRelayProvider()
        self.fee_oracle = fee_oracle or FeeOracle()
        self.preflight_verify = preflight_verify
        self.gas_margin = settings.relay_gas_margin if gas_margin is None else gas_margin

    async def verify(self, request: SignedRequest, forwarder: ForwarderContract) -> None:
        """Run the forwarder's ``verify`` locally; raise if it would reject."""
        valid = await forwarder.verify(request.message, request.signature, forward_request_types(request.schema))
        if not valid:
            raise ForwarderRejectedError(
                "Forwarder verify() rejected the request",
                chain_id=forwarder.rpc.chain_id,
                details={"nonce": request.nonce, "from": request.signer},
            )

    async def submit_gasless(
        self,
        request: SignedRequest,
        network: NetworkConfig,
        forwarder: Optional[ForwarderContract] = None,
    ) -> str:
        """Send ``{request, signature}`` to the network's relay and return the tx hash."""
        webhook = network.require_relayer()
        if self.preflight_verify and forwarder is not None:
            await self.verify(request, forwarder)

        tx_hash = await self.relay_provider.relay(webhook, request.to_payload())
        logger.info(
            "Sent gasless tx on %s: %s/tx/%s (relay gas limit %d)",
            network.name,
            network.explorer_url,
            tx_hash,
            relay_gas_limit(request, self.gas_margin),
        )
        return tx_hash

    async def submit_direct(
        self,
        descriptor: TransactionDescriptor,
        signer: Signer,
        network: NetworkConfig,
        rpc: RpcClient,
    ) -> str:
        """Sign and broadcast the descriptor's call from the sender's own key."""
        data = encode_method(descriptor.method, descriptor.args)
        call = {
            "from": signer.address,
            "to": descriptor.to_address,
            "data": data,
            "value": hex(descriptor.value),
        }
        gas_limit = int(await rpc.estimate_gas(call) * DIRECT_GAS_MULTIPLIER)
        fees = await self.fee_oracle.suggest(network, rpc)
        nonce = await rpc.get_transaction_count(signer.address, "pending")

        tx = {
            "type": 2,
            "chainId": network.chain_id,
            "to": descriptor.to_address,
            "data": data,
            "value": descriptor.value,
            "gas": gas_limit,
            "nonce": nonce,
            "maxFeePerGas": fees.max_fee_per_gas,
            "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
        }
        raw = signer.sign_transaction(tx)
        descriptor.status = DescriptorStatus.SIGNED
        tx_hash = await rpc.send_raw_transaction(raw)
        logger.info("Sent tx on %s: %s/tx/%s", network.name, network.explorer_url, tx_hash)
        return tx_hash
