"""
Withdrawal / Bridging Orchestrator

Same-chain parts become ``withdraw(amount, destination)``. Parts held on
other chains are bridged with ``bridgeWithdraw(amount, userRequest,
bridgeImpl)`` using a route fetched from the routing API. Descriptors on
different chains have no dependencies between them.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from ...config import settings
from ...providers.socket import SocketProvider
from ..bridging import fetch_route, route_query
from ..errors import ConfigurationError
from ..execution.models import ContractMethod, PlanKind, TransactionDescriptor, TransactionPlan
from ..networks import NetworkRegistry
from .models import WithdrawalRequest

logger = logging.getLogger(__name__)


class WithdrawalOrchestrator:
    """Plans withdrawals of in-protocol balances to one destination."""

    def __init__(
        self,
        networks: NetworkRegistry,
        *,
        routing: Optional[SocketProvider] = None,
        testnet_mode: Optional[bool] = None,
        testnet_source_chain_id: Optional[int] = None,
        testnet_destination_chain_id: Optional[int] = None,
    ):
        self.networks = networks
        self.routing = routing
        self.testnet_mode = settings.bridge_testnet_mode if testnet_mode is None else testnet_mode
        self.testnet_source_chain_id = testnet_source_chain_id or settings.testnet_route_source_chain_id
        self.testnet_destination_chain_id = (
            testnet_destination_chain_id or settings.testnet_route_destination_chain_id
        )

    async def plan_withdrawal(self, request: WithdrawalRequest) -> TransactionPlan:
        """Build one descriptor per source chain.

        Raises:
            PlanInvariantError: Invalid amounts.
            ConfigurationError: Unknown chain, or a bridge leg without a routing provider.
            RoutingApiError / RouteValidationError: No usable route for a bridge leg.
        """
        request.validate()
        destination = self.networks.require(request.destination_chain_id)

        async def _build(chain_id: int, amount: int) -> TransactionDescriptor:
            network = self.networks.require(chain_id)
            if network.chain_id == destination.chain_id:
                return TransactionDescriptor(
                    chain_id=network.chain_id,
                    method=ContractMethod.WITHDRAW,
                    args=OrderedDict([("amount", amount), ("to", request.destination_address)]),
                    from_address=request.sender_address,
                    to_address=network.require_sedn(),
                    amount=amount,
                )

            if self.routing is None:
                raise ConfigurationError(
                    f"Withdrawing from {network.name} to {destination.name} needs a routing provider",
                    chain_id=network.chain_id,
                )
            query = route_query(
                self.networks,
                network.chain_id,
                destination.chain_id,
                testnet_mode=self.testnet_mode,
                testnet_source_chain_id=self.testnet_source_chain_id,
                testnet_destination_chain_id=self.testnet_destination_chain_id,
            )
            route = await fetch_route(
                self.routing,
                query,
                amount=amount,
                user_address=network.require_sedn(),
                recipient=request.destination_address,
            )
            return TransactionDescriptor(
                chain_id=network.chain_id,
                method=ContractMethod.BRIDGE_WITHDRAW,
                args=OrderedDict([
                    ("amount", amount),
                    ("userRequest", route.user_request.as_tuple()),
                    ("bridgeImpl", route.bridge_impl),
                ]),
                from_address=request.sender_address,
                to_address=network.require_sedn(),
                amount=amount,
            )

        descriptors = await asyncio.gather(*(
            _build(chain_id, amount) for chain_id, amount in request.per_chain_amounts
        ))
        plan = TransactionPlan(
            kind=PlanKind.WITHDRAW,
            descriptors=list(descriptors),
            requested_amount=request.total_amount,
        )
        logger.info(
            "Planned withdrawal of %s to %s on %s: %s",
            request.total_amount,
            request.destination_address,
            destination.name,
            ", ".join(f"{d.method.value}@{d.chain_id}" for d in plan.descriptors),
        )
        return plan
