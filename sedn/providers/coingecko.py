"""Native asset prices from Coingecko, used to report what a transaction cost."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import httpx

from ..config import settings
from ..core.errors import PriceApiError

logger = logging.getLogger(__name__)

WEI_PER_NATIVE = Decimal(10) ** 18


class CoingeckoProvider:
    """Coingecko simple-price client for gas token prices."""

    name = "coingecko"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: int = 15,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = settings.coingecko_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")
        self.timeout_s = timeout_s
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["X-CG-Demo-API-Key"] = self.api_key
        return headers

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise PriceApiError(f"Coingecko {path} failed: {exc}") from exc
        except ValueError as exc:
            raise PriceApiError(f"Coingecko {path} returned a non-JSON body") from exc

    async def get_prices_usd(self, asset_ids: Iterable[str]) -> Dict[str, Decimal]:
        """USD price per asset id, e.g. ``{"ethereum": Decimal("1850.2")}``."""
        ids = sorted(set(asset_ids))
        if not ids:
            return {}
        data = await self._get("/simple/price", {"ids": ",".join(ids), "vs_currencies": "usd"})

        prices: Dict[str, Decimal] = {}
        for asset_id in ids:
            entry = data.get(asset_id) if isinstance(data, dict) else None
            if not entry or "usd" not in entry:
                raise PriceApiError(f"Coingecko has no USD price for {asset_id}")
            prices[asset_id] = Decimal(str(entry["usd"]))
        return prices

    async def get_price_usd(self, asset_id: str) -> Decimal:
        return (await self.get_prices_usd([asset_id]))[asset_id]

    async def tx_cost_usd(self, cost_wei: int, asset_id: str) -> Decimal:
        """Convert gas paid in wei of ``asset_id`` into USD."""
        price = await self.get_price_usd(asset_id)
        cost = Decimal(cost_wei) / WEI_PER_NATIVE * price
        logger.debug("Native cost %s %s at %s USD", Decimal(cost_wei) / WEI_PER_NATIVE, asset_id, price)
        return cost
