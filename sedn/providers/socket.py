"""Async client for the Socket bridge routing API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
from eth_utils import to_checksum_address

from ..config import settings
from ..core.errors import RoutingApiError
from ..core.execution.abi import decode_outbound_transfer

logger = logging.getLogger(__name__)


@dataclass
class MiddlewareRequest:
    id: int
    optional_native_amount: int
    input_token: str
    data: str

    def as_tuple(self) -> Tuple[int, int, str, str]:
        return (self.id, self.optional_native_amount, self.input_token, self.data)


@dataclass
class BridgeUserRequest:
    """Decoded ``outboundTransferTo`` user request (the contract's userRequestDict)."""
    receiver_address: str
    to_chain_id: int
    amount: int
    middleware_request: MiddlewareRequest
    bridge_request: MiddlewareRequest

    def as_tuple(self) -> Tuple[Any, ...]:
        return (
            self.receiver_address,
            self.to_chain_id,
            self.amount,
            self.middleware_request.as_tuple(),
            self.bridge_request.as_tuple(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receiverAddress": self.receiver_address,
            "toChainId": self.to_chain_id,
            "amount": self.amount,
            "middlewareRequest": list(self.middleware_request.as_tuple()),
            "bridgeRequest": list(self.bridge_request.as_tuple()),
        }


@dataclass
class BridgeRoute:
    route: Dict[str, Any]
    tx_target: str
    tx_data: str
    value: int
    user_request: BridgeUserRequest
    bridge_impl: str                            # approvalData.allowanceTarget
    from_amount: int
    to_amount: int
    approval_data: Dict[str, Any] = field(default_factory=dict)


def decode_user_request(tx_data: str) -> BridgeUserRequest:
    """Decode the routing API's calldata into the contract's user request."""
    try:
        receiver, to_chain, amount, middleware, bridge = decode_outbound_transfer(tx_data)
    except ValueError as exc:
        raise RoutingApiError(f"Unexpected build-tx calldata: {exc}") from exc

    def _sub(raw: Tuple[Any, ...]) -> MiddlewareRequest:
        return MiddlewareRequest(
            id=int(raw[0]),
            optional_native_amount=int(raw[1]),
            input_token=to_checksum_address(raw[2]),
            data="0x" + bytes(raw[3]).hex(),
        )

    return BridgeUserRequest(
        receiver_address=to_checksum_address(receiver),
        to_chain_id=int(to_chain),
        amount=int(amount),
        middleware_request=_sub(middleware),
        bridge_request=_sub(bridge),
    )


class SocketProvider:
    """Thin client for the Socket v2 quote and build-tx endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: int = 20,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.socket_api_key
        self.base_url = (base_url or settings.socket_base_url).rstrip("/")
        self.timeout_s = timeout_s
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.api_key:
            headers["API-KEY"] = self.api_key
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            if self._client is not None:
                resp = await self._client.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
            else:
                async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s) as client:
                    resp = await client.request(method, path, headers=self._headers(), **kwargs)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise RoutingApiError(
                f"Socket {path} failed: HTTP {exc.response.status_code}",
                details={"status_code": exc.response.status_code},
            ) from exc
        except (httpx.RequestError, ValueError) as exc:
            raise RoutingApiError(f"Socket {path} failed: {exc}") from exc

        if isinstance(body, dict) and body.get("success") is False:
            raise RoutingApiError(f"Socket {path} reported failure: {body.get('message') or body}")
        return body

    async def quote(
        self,
        *,
        from_chain_id: int,
        from_token_address: str,
        to_chain_id: int,
        to_token_address: str,
        from_amount: int,
        user_address: str,
        recipient: str,
        unique_routes_per_bridge: bool = True,
        sort: str = "output",
        single_tx_only: bool = True,
    ) -> Dict[str, Any]:
        """Fetch route options via ``GET /v2/quote``."""
        params = {
            "fromChainId": from_chain_id,
            "fromTokenAddress": from_token_address,
            "toChainId": to_chain_id,
            "toTokenAddress": to_token_address,
            "fromAmount": str(from_amount),
            "userAddress": user_address,
            "uniqueRoutesPerBridge": str(unique_routes_per_bridge).lower(),
            "sort": sort,
            "recipient": recipient,
            "singleTxOnly": str(single_tx_only).lower(),
        }
        return await self._request("GET", "/v2/quote", params=params)

    async def build_tx(self, route: Dict[str, Any]) -> Dict[str, Any]:
        """Build the bridge transaction for a route via ``POST /v2/build-tx``."""
        return await self._request("POST", "/v2/build-tx", json={"route": route})

    async def get_route(
        self,
        *,
        from_chain_id: int,
        from_token_address: str,
        to_chain_id: int,
        to_token_address: str,
        amount: int,
        user_address: str,
        recipient: str,
    ) -> BridgeRoute:
        """Quote, take the first route, build it and decode the user request."""
        quote = await self.quote(
            from_chain_id=from_chain_id,
            from_token_address=from_token_address,
            to_chain_id=to_chain_id,
            to_token_address=to_token_address,
            from_amount=amount,
            user_address=user_address,
            recipient=recipient,
        )
        routes: List[Dict[str, Any]] = (quote.get("result") or {}).get("routes") or []
        if not routes:
            raise RoutingApiError(
                f"No bridge route from {from_chain_id} to {to_chain_id} for {amount}",
                details={"from_chain_id": from_chain_id, "to_chain_id": to_chain_id},
            )
        route = routes[0]

        build = await self.build_tx(route)
        result = build.get("result") or {}
        tx_data = result.get("txData")
        approval = result.get("approvalData") or {}
        if not tx_data or not approval.get("allowanceTarget"):
            raise RoutingApiError("build-tx response is missing txData or approvalData.allowanceTarget")

        user_request = decode_user_request(tx_data)
        logger.info(
            "Socket route %s -> %s amount=%s via %s",
            from_chain_id,
            to_chain_id,
            amount,
            (route.get("usedBridgeNames") or ["?"])[0],
        )
        return BridgeRoute(
            route=route,
            tx_target=result.get("txTarget", ""),
            tx_data=tx_data,
            value=int(str(result.get("value") or "0"), 0),
            user_request=user_request,
            bridge_impl=to_checksum_address(approval["allowanceTarget"]),
            from_amount=int(route.get("fromAmount") or amount),
            to_amount=int(route.get("toAmount") or 0),
            approval_data=approval,
        )
