"""
Async JSON-RPC client for a single chain.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ...config import settings
from ..errors import ConfigurationError, RpcError, TransactionRevertedError

logger = logging.getLogger(__name__)

_REVERT_MARKERS = ("revert", "execution reverted")


class RpcClient:
    """Thin JSON-RPC wrapper over httpx.

    Connection failures, 429 and 5xx responses are retried with exponential
    backoff and then raise ``RpcError`` (recoverable), as do bodies that are
    not a JSON-RPC object. Node errors that report a revert raise
    ``TransactionRevertedError`` carrying the reason.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: Optional[int] = None,
        timeout_s: float = 30.0,
        retries: Optional[int] = None,
        backoff_s: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.retries = settings.http_retry_count if retries is None else retries
        self.backoff_s = backoff_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._sleep = sleep
        self._ids = itertools.count(1)

    async def call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result``."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        last_error: Optional[Exception] = None

        for attempt in range(self.retries + 1):
            try:
                response = await self._client.post(self.rpc_url, json=payload)
            except httpx.RequestError as exc:
                last_error = exc
                logger.warning("%s on chain %s failed (attempt %d): %s", method, self.chain_id, attempt + 1, exc)
            else:
                if response.status_code >= 500 or response.status_code == 429:
                    last_error = httpx.HTTPStatusError(
                        f"RPC returned {response.status_code}", request=response.request, response=response
                    )
                    logger.warning(
                        "%s on chain %s got HTTP %s (attempt %d)",
                        method,
                        self.chain_id,
                        response.status_code,
                        attempt + 1,
                    )
                else:
                    return self._result(method, response)

            if attempt < self.retries:
                await self._sleep(self.backoff_s * (2 ** attempt))

        raise RpcError(
            f"{method} failed after {self.retries + 1} attempts: {last_error}",
            chain_id=self.chain_id,
        ) from last_error

    def _result(self, method: str, response: httpx.Response) -> Any:
        try:
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise RpcError(f"{method} failed: {exc}", chain_id=self.chain_id) from exc
        except ValueError as exc:
            raise RpcError(
                f"{method} returned a non-JSON body (HTTP {response.status_code})",
                chain_id=self.chain_id,
            ) from exc
        if not isinstance(body, dict):
            raise RpcError(f"{method} returned {type(body).__name__}, not a JSON-RPC object", chain_id=self.chain_id)

        if "error" in body:
            error = body["error"] or {}
            if not isinstance(error, dict):
                error = {"message": error}
            message = str(error.get("message", error))
            if any(marker in message.lower() for marker in _REVERT_MARKERS):
                reason = message.split("reverted:", 1)[-1].strip() if "reverted:" in message else message
                raise TransactionRevertedError(
                    f"{method} reverted: {message}",
                    reason=reason,
                    chain_id=self.chain_id,
                    details={"data": error.get("data")},
                )
            raise RpcError(f"RPC error from {method}: {message}", chain_id=self.chain_id, details={"error": error})

        return body.get("result")

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, block])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx])

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def fee_history(self, block_count: int = 1, percentiles: Optional[List[int]] = None) -> Dict[str, Any]:
        return await self.call("eth_feeHistory", [block_count, "latest", percentiles or [50]])

    async def max_priority_fee(self) -> int:
        return int(await self.call("eth_maxPriorityFeePerGas", []), 16)

    async def get_block(self, block: str = "latest") -> Dict[str, Any]:
        return await self.call("eth_getBlockByNumber", [block, False])

    async def latest_timestamp(self) -> int:
        block = await self.get_block("latest")
        return int(block["timestamp"], 16)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class RpcPool:
    """One RpcClient per chain, built lazily from the network registry."""

    def __init__(self, networks, *, timeout_s: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self._networks = networks
        self._timeout_s = timeout_s
        self._shared_client = client
        self._clients: Dict[int, RpcClient] = {}

    def for_chain(self, chain_id: int) -> RpcClient:
        if chain_id not in self._clients:
            network = self._networks.require(chain_id)
            if not network.rpc_url:
                raise ConfigurationError(f"No RPC URL configured for {network.name}", chain_id=chain_id)
            self._clients[chain_id] = RpcClient(
                network.rpc_url,
                chain_id=chain_id,
                timeout_s=self._timeout_s,
                client=self._shared_client,
            )
        return self._clients[chain_id]

    async def close(self) -> None:
        if self._shared_client is not None:
            await self._shared_client.aclose()
            return
        for client in self._clients.values():
            await client.close()
