"""EIP-1559 fee suggestions per chain."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import httpx

from ..config import settings
from ..core.errors import RpcError
from ..core.networks import FeeOracleKind, NetworkConfig

if TYPE_CHECKING:
    from ..core.execution.rpc import RpcClient

logger = logging.getLogger(__name__)

GWEI = 10**9
DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000


@dataclass
class FeeSuggestion:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


class FeeOracle:
    """Chooses the fee source configured for a network.

    Polygon uses the public gas station ("fast" tier, rounded up to whole
    gwei). Every other chain takes the latest base fee from the node's fee
    history and the tip from ``eth_maxPriorityFeePerGas``; nodes without
    that method fall back to the fee history's median reward.
    """

    def __init__(
        self,
        *,
        gas_station_url: Optional[str] = None,
        timeout_s: int = 20,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.gas_station_url = gas_station_url or settings.polygon_gas_station_url
        self.timeout_s = timeout_s
        self._client = client

    async def suggest(self, network: NetworkConfig, rpc: RpcClient) -> FeeSuggestion:
        if network.fee_oracle is FeeOracleKind.POLYGON_GAS_STATION:
            logger.info("Polygon fee market is used")
            return await self._from_gas_station()
        logger.info("Standard fee market is used")
        return await self._from_node(rpc)

    async def _from_gas_station(self) -> FeeSuggestion:
        try:
            if self._client is not None:
                response = await self._client.get(self.gas_station_url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.get(self.gas_station_url)
            response.raise_for_status()
            fast = response.json()["fast"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise RpcError(f"Polygon gas station unavailable: {exc}") from exc

        return FeeSuggestion(
            max_fee_per_gas=math.ceil(float(fast["maxFee"])) * GWEI,
            max_priority_fee_per_gas=math.ceil(float(fast["maxPriorityFee"])) * GWEI,
        )

    async def _from_node(self, rpc: RpcClient) -> FeeSuggestion:
        history = await rpc.fee_history(1, [50])
        base_fee = int(history["baseFeePerGas"][-1], 16)
        try:
            priority_fee = await rpc.max_priority_fee()
        except RpcError as exc:
            if "error" not in exc.context.details:
                raise
            logger.info("eth_maxPriorityFeePerGas unsupported on chain %s: %s", rpc.chain_id, exc)
            rewards = history.get("reward") or []
            priority_fee = int(rewards[0][0], 16) if rewards and rewards[0] else DEFAULT_PRIORITY_FEE_WEI
        return FeeSuggestion(
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )
