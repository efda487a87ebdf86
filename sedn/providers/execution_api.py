"""Async client for the execution orchestration API.

Each endpoint is a callable function: ``POST {base}/{name}`` with body
``{"data": payload}``; responses wrap their payload in ``result``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.errors import ConfigurationError, ExecutionApiError

logger = logging.getLogger(__name__)


class ExecutionApiProvider:
    """Thin wrapper around the wire / withdraw / claim / execution endpoints."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        environment: Optional[str] = None,
        timeout_s: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        configured = base_url or settings.execution_api_url
        if not configured:
            raise ConfigurationError("Execution API URL is not configured")
        self.base_url = configured.rstrip("/")
        self.auth_token = auth_token if auth_token is not None else settings.execution_api_token
        self.environment = environment or settings.environment
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
        }
        if self.auth_token:
            headers["authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def _call(self, name: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{name}"
        try:
            if self._client is not None:
                response = await self._client.post(url, json={"data": payload}, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.post(url, json={"data": payload}, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ExecutionApiError(
                f"Execution API {name} failed: HTTP {exc.response.status_code}",
                details={"status_code": exc.response.status_code, "body": exc.response.text[:500]},
            ) from exc
        except (httpx.RequestError, ValueError) as exc:
            raise ExecutionApiError(f"Execution API {name} failed: {exc}") from exc

        if isinstance(body, dict) and "error" in body:
            raise ExecutionApiError(f"Execution API {name} returned error: {body['error']}")
        if isinstance(body, dict) and "result" in body:
            return body["result"]
        return body

    async def wire(self, *, sender_address: str, recipient_id: str, amount: str, testnet: bool) -> Dict[str, Any]:
        """Ask the API to plan a send; returns ``{type, transactions}``."""
        return await self._call("wire", {
            "senderAddress": sender_address,
            "recipientId": recipient_id,
            "amount": amount,
            "testnet": testnet,
            "environment": self.environment,
        })

    async def withdraw(
        self,
        *,
        destination_address: str,
        destination_chain_id: int,
        amount: str,
        testnet: bool,
        use_stargate: bool = False,
    ) -> Dict[str, Any]:
        return await self._call("withdraw", {
            "destinationAddress": destination_address,
            "destinationChainId": destination_chain_id,
            "amount": amount,
            "useStargate": use_stargate,
            "environment": self.environment,
            "testnet": testnet,
        })

    async def claim_info(self, secret: str) -> Dict[str, Any]:
        """Look up the executions and chains that committed ``secret``."""
        return await self._call("claimInfo", {"secret": secret})

    async def claim(
        self,
        *,
        execution_ids: List[str],
        chain_ids: List[int],
        solution: str,
        recipient_address: str,
        testnet: bool,
    ) -> Dict[str, Any]:
        return await self._call("claim", {
            "executionIds": execution_ids,
            "chainIds": chain_ids,
            "solution": solution,
            "recipientAddress": recipient_address,
            "testnet": testnet,
            "environment": self.environment,
        })

    async def execute_transactions(
        self,
        transactions: List[Dict[str, Any]],
        *,
        transaction_type: str,
        recipient_id_or_address: str,
    ) -> str:
        """Hand signed transactions to the API and return the execution id."""
        response = await self._call("executeTransactions", {
            "transactions": transactions,
            "environment": self.environment,
            "type": transaction_type,
            "recipientIdOrAddress": recipient_id_or_address,
        })
        execution = (response or {}).get("execution") or {}
        execution_id = execution.get("id")
        if not execution_id:
            raise ExecutionApiError(f"executeTransactions returned no execution id: {response}")
        logger.info("Execution created: %s", execution_id)
        return execution_id

    async def execution_status(self, execution_id: str) -> Dict[str, Any]:
        return await self._call("executionStatus", {"executionId": execution_id})

