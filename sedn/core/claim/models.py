"""
Claim lifecycle models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..chain_types import ChainId
from ..execution.signing import ClaimAuthorization


class ClaimState(str, Enum):
    """Lifecycle of a transfer to an unknown recipient on one chain."""
    COMMITTED = "committed"      # Secret stored on-chain with a locked amount
    AUTHORIZED = "authorized"    # Verifier signed a receiver binding
    CLAIMED = "claimed"          # claim / bridgeClaim confirmed
    EXPIRED = "expired"          # validUntil passed without a claim

    @property
    def is_terminal(self) -> bool:
        return self in (ClaimState.CLAIMED, ClaimState.EXPIRED)


# EXPIRED is terminal; a fresh commitment is a new record
ALLOWED_TRANSITIONS: Dict[ClaimState, FrozenSet[ClaimState]] = {
    ClaimState.COMMITTED: frozenset({ClaimState.AUTHORIZED, ClaimState.EXPIRED}),
    ClaimState.AUTHORIZED: frozenset({ClaimState.AUTHORIZED, ClaimState.CLAIMED, ClaimState.EXPIRED}),
    ClaimState.CLAIMED: frozenset(),
    ClaimState.EXPIRED: frozenset(),
}


@dataclass
class ClaimRecord:
    """A committed secret on one chain."""
    secret: str
    chain_id: ChainId
    amount: int
    sender_address: str
    solution: Optional[str] = None
    state: ClaimState = ClaimState.COMMITTED
    authorization: Optional[ClaimAuthorization] = None
    receiver_address: Optional[str] = None
    commit_tx_hash: Optional[str] = None
    claim_tx_hash: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def key(self) -> str:
        return claim_key(self.secret, self.chain_id)


def claim_key(secret: str, chain_id: int) -> str:
    return f"{chain_id}:{secret.lower()}"
