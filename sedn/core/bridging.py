"""
Bridge route lookup and validation shared by bridgeWithdraw and bridgeClaim.
"""

import logging
from dataclasses import dataclass

from ..providers.socket import BridgeRoute, SocketProvider
from .errors import RouteValidationError
from .networks import NetworkRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteQuery:
    """Chain and token pair actually sent to the routing API."""
    from_chain_id: int
    from_token_address: str
    to_chain_id: int
    to_token_address: str
    substituted: bool = False


def route_query(
    networks: NetworkRegistry,
    source_chain_id: int,
    destination_chain_id: int,
    *,
    testnet_mode: bool = False,
    testnet_source_chain_id: int = 137,
    testnet_destination_chain_id: int = 42161,
) -> RouteQuery:
    """Resolve the chains and tokens to quote.

    Testnets have no live routes, so in testnet mode the query uses the
    configured mainnet pair instead of the real source and destination.
    """
    if testnet_mode:
        source = networks.require(testnet_source_chain_id)
        destination = networks.require(testnet_destination_chain_id)
        logger.warning(
            "Bridge testnet mode: quoting %s -> %s in place of %s -> %s",
            source.name,
            destination.name,
            source_chain_id,
            destination_chain_id,
        )
        return RouteQuery(
            from_chain_id=source.chain_id,
            from_token_address=source.require_token(),
            to_chain_id=destination.chain_id,
            to_token_address=destination.require_token(),
            substituted=True,
        )

    source = networks.require(source_chain_id)
    destination = networks.require(destination_chain_id)
    return RouteQuery(
        from_chain_id=source.chain_id,
        from_token_address=source.require_token(),
        to_chain_id=destination.chain_id,
        to_token_address=destination.require_token(),
    )


async def fetch_route(
    routing: SocketProvider,
    query: RouteQuery,
    *,
    amount: int,
    user_address: str,
    recipient: str,
) -> BridgeRoute:
    """Fetch the best route for ``query`` and validate it against the request."""
    route = await routing.get_route(
        from_chain_id=query.from_chain_id,
        from_token_address=query.from_token_address,
        to_chain_id=query.to_chain_id,
        to_token_address=query.to_token_address,
        amount=amount,
        user_address=user_address,
        recipient=recipient,
    )
    validate_route(route, receiver=recipient, amount=amount, destination_chain_id=query.to_chain_id)
    return route


def validate_route(route: BridgeRoute, *, receiver: str, amount: int, destination_chain_id: int) -> None:
    """Raise RouteValidationError unless the route pays ``receiver`` ``amount`` on the destination chain."""
    request = route.user_request
    problems = []
    if request.receiver_address.lower() != receiver.lower():
        problems.append(f"receiver {request.receiver_address} != {receiver}")
    if request.amount != amount:
        problems.append(f"amount {request.amount} != {amount}")
    if request.to_chain_id != destination_chain_id:
        problems.append(f"destination chain {request.to_chain_id} != {destination_chain_id}")
    if problems:
        raise RouteValidationError(
            "Bridge route does not match the request: " + "; ".join(problems),
            details={"receiver": receiver, "amount": amount, "destination_chain_id": destination_chain_id},
        )
