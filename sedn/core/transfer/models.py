"""
Transfer intent models.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from eth_utils import is_address, to_checksum_address

from ..chain_types import ChainId
from ..errors import PlanInvariantError


@dataclass(frozen=True)
class TransferIntent:
    """A request to move ``amount`` from ``sender_address`` to a recipient."""
    sender_address: str
    recipient_identifier: str                   # Address, phone number, handle...
    amount: int                                 # Smallest token unit
    origin_chains: Tuple[ChainId, ...]

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise PlanInvariantError(f"Transfer amount must be positive, got {self.amount}")
        if not self.origin_chains:
            raise PlanInvariantError("Transfer needs at least one origin chain")
        if len(set(self.origin_chains)) != len(self.origin_chains):
            raise PlanInvariantError(f"Duplicate origin chains: {self.origin_chains}")


@dataclass
class ChainBalance:
    """Sender's funds on one chain."""
    chain_id: ChainId
    token_balance: int = 0                      # External USDC
    sedn_balance: int = 0                       # In-protocol
    allowance: int = 0                          # Token allowance granted to the Sedn contract

    @property
    def available(self) -> int:
        return self.token_balance + self.sedn_balance


@dataclass(frozen=True)
class ChainAllocation:
    """How much of one chain's funds a plan uses."""
    chain_id: ChainId
    balance_part: int                           # From the in-protocol balance
    external_part: int                          # Pulled from the token

    @property
    def total(self) -> int:
        return self.balance_part + self.external_part


@runtime_checkable
class RecipientResolver(Protocol):
    """Maps a non-address identifier to an on-chain address, if registered."""

    async def resolve(self, identifier: str) -> Optional[str]:
        ...


class MappingRecipientResolver:
    """Resolver backed by a fixed identifier -> address table."""

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self._mapping: Dict[str, str] = {k.lower(): v for k, v in (mapping or {}).items()}

    async def resolve(self, identifier: str) -> Optional[str]:
        address = self._mapping.get(identifier.lower())
        return to_checksum_address(address) if address else None


def as_address(identifier: str) -> Optional[str]:
    """Checksummed address when ``identifier`` is one, else None."""
    if is_address(identifier):
        return to_checksum_address(identifier)
    return None
