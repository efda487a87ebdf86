"""
Network registry.

Holds the immutable per-chain configuration (RPC endpoint, contract
addresses, forwarder schema, relay webhook). Every component receives the
registry explicitly; there is no process-wide instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from eth_utils import is_address, to_checksum_address

from .chain_types import (
    ARBITRUM,
    ARBITRUM_GOERLI,
    GNOSIS,
    MAINNET,
    NETWORK_NAME_TO_ID,
    OPTIMISM,
    OPTIMISM_GOERLI,
    POLYGON,
    ChainId,
    is_testnet,
    normalize_to_chain_id,
)
from ..providers.public_config import fetch_public_config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ForwarderSchema(str, Enum):
    """EIP-712 layout accepted by a deployed forwarder."""

    # SednForwarder 0.0.2: chain id and validity window live in the message
    SEDN_FORWARDER = "sedn-forwarder-0.0.2"
    # OpenZeppelin MinimalForwarder 0.0.1: chain id lives in the domain
    MINIMAL_FORWARDER = "minimal-forwarder-0.0.1"


class FeeOracleKind(str, Enum):
    NODE = "node"
    POLYGON_GAS_STATION = "polygon-gas-station"


@dataclass(frozen=True)
class NetworkConfig:
    """Static configuration for one chain."""

    chain_id: ChainId
    name: str
    rpc_url: str = ""
    explorer_url: str = ""
    sedn_address: str = ""
    token_address: str = ""
    token_decimals: int = 6
    forwarder_address: str = ""
    forwarder_schema: ForwarderSchema = ForwarderSchema.SEDN_FORWARDER
    relayer_webhook: str = ""
    fee_oracle: FeeOracleKind = FeeOracleKind.NODE
    native_asset_id: str = "ethereum"          # Coingecko id of the gas token
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_testnet(self) -> bool:
        return is_testnet(self.chain_id)

    def require_sedn(self) -> str:
        if not is_address(self.sedn_address):
            raise ConfigurationError(f"No Sedn contract configured for {self.name}", chain_id=self.chain_id)
        return to_checksum_address(self.sedn_address)

    def require_token(self) -> str:
        if not is_address(self.token_address):
            raise ConfigurationError(f"No token contract configured for {self.name}", chain_id=self.chain_id)
        return to_checksum_address(self.token_address)

    def require_forwarder(self) -> str:
        if not is_address(self.forwarder_address):
            raise ConfigurationError(f"No forwarder configured for {self.name}", chain_id=self.chain_id)
        return to_checksum_address(self.forwarder_address)

    def require_relayer(self) -> str:
        if not self.relayer_webhook:
            raise ConfigurationError(f"No relayer webhook configured for {self.name}", chain_id=self.chain_id)
        return self.relayer_webhook


INFURA_TEMPLATES: Dict[str, str] = {
    "mainnet": "https://mainnet.infura.io/v3/{key}",
    "polygon": "https://polygon-mainnet.infura.io/v3/{key}",
    "arbitrum": "https://arbitrum-mainnet.infura.io/v3/{key}",
    "optimism": "https://optimism-mainnet.infura.io/v3/{key}",
    "goerli": "https://goerli.infura.io/v3/{key}",
    "sepolia": "https://sepolia.infura.io/v3/{key}",
    "arbitrum-goerli": "https://arbitrum-goerli.infura.io/v3/{key}",
    "optimism-goerli": "https://optimism-goerli.infura.io/v3/{key}",
}

DEFAULT_NETWORKS: Tuple[NetworkConfig, ...] = (
    NetworkConfig(
        chain_id=POLYGON,
        name="polygon",
        aliases=("matic", "polygon-mainnet"),
        explorer_url="https://polygonscan.com",
        sedn_address="0x579e9809c0e06711a815698ebcd38b210621760a",
        token_address="0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        forwarder_address="0xc5babfd1c5ffda1f24b1fc21453692d8d9678a87",
        forwarder_schema=ForwarderSchema.MINIMAL_FORWARDER,
        fee_oracle=FeeOracleKind.POLYGON_GAS_STATION,
        native_asset_id="matic-network",
    ),
    NetworkConfig(
        chain_id=ARBITRUM,
        name="arbitrum",
        aliases=("arb",),
        explorer_url="https://arbiscan.io",
        sedn_address="0x8dc32778b81f7c2a537647ccf7fac2f8bc713f9c",
        token_address="0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8",
        forwarder_address="0x77183b55ba34bf5a4da4d362085a68a67b78ccda",
        forwarder_schema=ForwarderSchema.MINIMAL_FORWARDER,
    ),
    NetworkConfig(
        chain_id=OPTIMISM,
        name="optimism",
        aliases=("op",),
        explorer_url="https://optimistic.etherscan.io",
        token_address="0x7F5c764cBc14f9669B88837ca1490cCa17c31607",
    ),
    NetworkConfig(
        chain_id=MAINNET,
        name="mainnet",
        aliases=("ethereum", "eth"),
        explorer_url="https://etherscan.io",
        token_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        forwarder_address="0x67c67a22d80466638a5d26cd921efb18f2c09b57",
        forwarder_schema=ForwarderSchema.MINIMAL_FORWARDER,
    ),
    NetworkConfig(
        chain_id=GNOSIS,
        name="gnosis",
        aliases=("xdai",),
        native_asset_id="xdai",
        forwarder_address="0xb2819af7aaa8e7394d2303f2ab3c731c36072fd3",
        forwarder_schema=ForwarderSchema.MINIMAL_FORWARDER,
    ),
    NetworkConfig(chain_id=ARBITRUM_GOERLI, name="arbitrum-goerli", explorer_url="https://goerli.arbiscan.io"),
    NetworkConfig(
        chain_id=OPTIMISM_GOERLI,
        name="optimism-goerli",
        explorer_url="https://goerli-optimism.etherscan.io",
    ),
)


class NetworkRegistry(Mapping[ChainId, NetworkConfig]):
    """Immutable lookup of NetworkConfig by chain id, name or alias."""

    def __init__(self, networks: Iterable[NetworkConfig]):
        by_id: Dict[ChainId, NetworkConfig] = {}
        names: Dict[str, ChainId] = {}
        for network in networks:
            by_id[network.chain_id] = network
            names[network.name.lower()] = network.chain_id
            for alias in network.aliases:
                names[alias.lower()] = network.chain_id
        self._by_id = MappingProxyType(by_id)
        self._names = MappingProxyType(names)

    def __getitem__(self, chain_id: ChainId) -> NetworkConfig:
        return self._by_id[chain_id]

    def __iter__(self) -> Iterator[ChainId]:
        return iter(self._by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def require(self, chain: Union[int, str]) -> NetworkConfig:
        """Look up a network by id, name or alias; raise ConfigurationError if unknown."""
        if isinstance(chain, str):
            key = chain.lower().strip()
            if key in self._names:
                return self._by_id[self._names[key]]
            try:
                chain = normalize_to_chain_id(key)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown network: {chain}") from exc
        network = self._by_id.get(ChainId(chain))
        if network is None:
            raise ConfigurationError(f"Network {chain} is not configured", chain_id=int(chain))
        return network

    def with_overrides(self, chain_id: ChainId, **changes: Any) -> "NetworkRegistry":
        """Return a new registry with one network's fields replaced."""
        network = self.require(chain_id)
        updated = replace(network, **changes)
        return NetworkRegistry(updated if n.chain_id == chain_id else n for n in self._by_id.values())

    @classmethod
    def from_settings(cls, settings: Any, networks: Optional[Iterable[NetworkConfig]] = None) -> "NetworkRegistry":
        """Build the registry from defaults overlaid with values from Settings."""
        resolved = []
        for network in networks if networks is not None else DEFAULT_NETWORKS:
            changes: Dict[str, Any] = {}
            rpc = settings.rpc_url_for(network.name, INFURA_TEMPLATES.get(network.name))
            if rpc:
                changes["rpc_url"] = rpc
            if network.name in settings.sedn_addresses:
                changes["sedn_address"] = settings.sedn_addresses[network.name]
            if network.name in settings.forwarder_addresses:
                changes["forwarder_address"] = settings.forwarder_addresses[network.name]
            if network.name in settings.relayer_webhooks:
                changes["relayer_webhook"] = settings.relayer_webhooks[network.name]
            resolved.append(replace(network, **changes) if changes else network)
        return cls(resolved)

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        *,
        base: Optional["NetworkRegistry"] = None,
        forwarder_schemas: Optional[Mapping[str, ForwarderSchema]] = None,
    ) -> "NetworkRegistry":
        """Overlay a public config document onto a base registry.

        The document carries ``contracts``, ``usdc``, ``forwarder``,
        ``relayerWebhooks`` and ``nativeAssetIds`` maps keyed by network
        name. Forwarder schemas are not part of the document and must be
        supplied per network when they differ from the base registry.
        """
        base = base or cls(DEFAULT_NETWORKS)
        schemas = dict(forwarder_schemas or {})
        contracts = document.get("contracts") or {}
        tokens = document.get("usdc") or {}
        forwarders = document.get("forwarder") or {}
        webhooks = document.get("relayerWebhooks") or {}
        asset_ids = document.get("nativeAssetIds") or {}

        names = set(contracts) | set(tokens) | set(forwarders) | set(webhooks) | set(asset_ids)
        updated: Dict[ChainId, NetworkConfig] = dict(base._by_id)
        for name in sorted(names):
            try:
                network = base.require(name)
            except ConfigurationError:
                if name not in NETWORK_NAME_TO_ID:
                    logger.warning("Ignoring unknown network %s in config document", name)
                    continue
                network = NetworkConfig(chain_id=NETWORK_NAME_TO_ID[name], name=name)

            changes: Dict[str, Any] = {}
            if name in contracts:
                changes["sedn_address"] = _contract_address(contracts[name])
            if name in tokens:
                changes["token_address"] = _contract_address(tokens[name])
            if name in forwarders:
                changes["forwarder_address"] = _contract_address(forwarders[name])
            if name in webhooks:
                changes["relayer_webhook"] = webhooks[name]
            if name in asset_ids:
                changes["native_asset_id"] = asset_ids[name]
            if name in schemas:
                changes["forwarder_schema"] = schemas[name]
            updated[network.chain_id] = replace(network, **changes)

        return cls(updated.values())


def _contract_address(entry: Any) -> str:
    if isinstance(entry, Mapping):
        return str(entry.get("contract") or entry.get("address") or "")
    return str(entry or "")


async def load_network_registry(
    settings: Any,
    *,
    public_config: bool = True,
    forwarder_schemas: Optional[Mapping[str, ForwarderSchema]] = None,
    client: Any = None,
) -> NetworkRegistry:
    """Build the registry for ``settings.environment``.

    Addresses from the public config document are overlaid on the
    defaults; explicit settings overrides are applied last.
    """
    if not public_config:
        return NetworkRegistry.from_settings(settings)
    document = await fetch_public_config(settings.environment, client=client)
    published = NetworkRegistry.from_document(document, forwarder_schemas=forwarder_schemas)
    return NetworkRegistry.from_settings(settings, networks=published.values())
