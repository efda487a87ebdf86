"""Async client for the meta-transaction relay webhook.

The relay is an autotask behind a webhook URL. It verifies the forward
request on-chain, executes it with ``gas + 1_000_000`` and answers with
``{"status": ..., "result": "<json string>"}`` where the decoded result
carries ``txHash``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.errors import ForwarderRejectedError, RelayError, RelayTransportError

logger = logging.getLogger(__name__)

_REJECTION_MARKERS = ("invalid request", "invalid signature", "signature does not match", "nonce")


class DefenderRelayProvider:
    """POSTs signed forward requests to a relay webhook."""

    def __init__(
        self,
        *,
        timeout_s: Optional[int] = None,
        retries: Optional[int] = None,
        backoff_s: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self.retries = settings.http_retry_count if retries is None else retries
        self.backoff_s = backoff_s
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
        }

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=self._headers())
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.post(url, json=payload, headers=self._headers())

    async def relay(self, webhook_url: str, payload: Dict[str, Any]) -> str:
        """Send ``{request, signature}`` and return the relayed tx hash.

        5xx responses and connection failures are retried with exponential
        backoff, then surface as ``RelayTransportError``. A relay rejection
        of the request itself is ``ForwarderRejectedError`` and is never
        retried.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.retries + 1):
            try:
                response = await self._post(webhook_url, payload)
            except httpx.RequestError as exc:
                last_error = exc
                logger.warning("Relay webhook unreachable (attempt %d): %s", attempt + 1, exc)
            else:
                if response.status_code >= 500:
                    last_error = httpx.HTTPStatusError(
                        f"Relay returned {response.status_code}", request=response.request, response=response
                    )
                    logger.warning("Relay webhook %s (attempt %d)", response.status_code, attempt + 1)
                else:
                    return self._parse(response)

            if attempt < self.retries:
                await asyncio.sleep(self.backoff_s * (2 ** attempt))

        raise RelayTransportError(f"Relay webhook failed after {self.retries + 1} attempts: {last_error}")

    def _parse(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError as exc:
            raise RelayError(f"Relay returned non-JSON body (HTTP {response.status_code})") from exc

        status = str(body.get("status", "")).lower()
        message = str(body.get("message") or body.get("error") or "")
        if response.status_code >= 400 or status == "error":
            if any(marker in message.lower() for marker in _REJECTION_MARKERS):
                raise ForwarderRejectedError(f"Forwarder rejected request: {message}")
            raise RelayError(f"Relay failed (HTTP {response.status_code}): {message or body}")

        result = body.get("result")
        if isinstance(result, str):
            try:
                result = json.loads(result)
            except ValueError as exc:
                raise RelayError(f"Relay result is not JSON: {result!r}") from exc

        tx_hash = (result or {}).get("txHash") if isinstance(result, dict) else None
        if not tx_hash:
            raise RelayError(f"Relay response carries no txHash: {body}")
        return tx_hash
