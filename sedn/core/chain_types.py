"""
Chain identification types and utilities.

Every chain the protocol touches is an EVM chain identified by its integer
chain id. Networks are also addressed by name in configuration files and
relay settings, so this module owns the name <-> id table.
"""

from __future__ import annotations

from typing import Dict, NewType, Union

ChainId = NewType("ChainId", int)

MAINNET = ChainId(1)
GOERLI = ChainId(5)
OPTIMISM = ChainId(10)
GNOSIS = ChainId(100)
POLYGON = ChainId(137)
OPTIMISM_GOERLI = ChainId(420)
ARBITRUM = ChainId(42161)
ARBITRUM_GOERLI = ChainId(421613)
SEPOLIA = ChainId(11155111)

NETWORK_NAME_TO_ID: Dict[str, ChainId] = {
    "mainnet": MAINNET,
    "goerli": GOERLI,
    "optimism": OPTIMISM,
    "gnosis": GNOSIS,
    "polygon": POLYGON,
    "optimism-goerli": OPTIMISM_GOERLI,
    "arbitrum": ARBITRUM,
    "arbitrum-goerli": ARBITRUM_GOERLI,
    "sepolia": SEPOLIA,
}

NETWORK_ALIASES: Dict[str, str] = {
    "ethereum": "mainnet",
    "eth": "mainnet",
    "matic": "polygon",
    "arb": "arbitrum",
    "op": "optimism",
    "xdai": "gnosis",
}

TESTNET_IDS = frozenset({GOERLI, OPTIMISM_GOERLI, ARBITRUM_GOERLI, SEPOLIA})


def is_testnet(chain_id: int) -> bool:
    return chain_id in TESTNET_IDS


def normalize_to_chain_id(chain: Union[str, int]) -> ChainId:
    """
    Convert a network name, alias or numeric id to a ChainId.

    Raises:
        ValueError: If the chain identifier is not recognized.

    Examples:
        >>> normalize_to_chain_id("polygon")
        137
        >>> normalize_to_chain_id("matic")
        137
        >>> normalize_to_chain_id(42161)
        42161
    """
    if isinstance(chain, int):
        return ChainId(chain)

    name = chain.lower().strip()
    if name.isdigit():
        return ChainId(int(name))

    name = NETWORK_ALIASES.get(name, name)
    if name in NETWORK_NAME_TO_ID:
        return NETWORK_NAME_TO_ID[name]

    raise ValueError(f"Unknown network: {chain}")
