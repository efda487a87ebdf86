"""
Withdrawal request model.
"""

from dataclasses import dataclass
from typing import Tuple

from ..chain_types import ChainId
from ..errors import PlanInvariantError


@dataclass(frozen=True)
class WithdrawalRequest:
    """Move in-protocol balance out to ``destination_address`` on one chain."""
    sender_address: str
    total_amount: int
    destination_address: str
    destination_chain_id: ChainId
    per_chain_amounts: Tuple[Tuple[ChainId, int], ...]

    def validate(self) -> None:
        """Amounts must be positive, unique per chain and add up to the total."""
        if self.total_amount <= 0:
            raise PlanInvariantError(f"Withdrawal amount must be positive, got {self.total_amount}")
        if not self.per_chain_amounts:
            raise PlanInvariantError("Withdrawal needs at least one source chain")

        chains = [chain_id for chain_id, _ in self.per_chain_amounts]
        if len(set(chains)) != len(chains):
            raise PlanInvariantError(f"Duplicate source chains: {chains}")
        for chain_id, amount in self.per_chain_amounts:
            if amount <= 0:
                raise PlanInvariantError(f"Amount on chain {chain_id} must be positive, got {amount}", chain_id=chain_id)

        total = sum(amount for _, amount in self.per_chain_amounts)
        if total != self.total_amount:
            raise PlanInvariantError(f"Per-chain amounts add up to {total}, expected {self.total_amount}")
