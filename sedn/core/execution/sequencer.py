"""
Issuance sequencing for concurrent plans.

The forwarder nonce is owned by the chain and read fresh before every
signing, so nothing here caches nonces. What must be prevented is two
tasks signing for the same (address, chain) at once and both reading the
same nonce. Each pair gets one asyncio.Lock held from nonce read until the
submitted request has confirmed.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

from ..errors import NonceConflictError


@dataclass
class IssuanceState:
    """Bookkeeping for an (address, chain) pair."""
    address: str
    chain_id: int
    issued: int = 0
    last_nonce: Optional[int] = None
    last_issued_at: Optional[datetime] = None


class NonceSequencer:
    """Serializes signing + submission per (address, chain)."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._states: Dict[str, IssuanceState] = {}

    def _get_key(self, chain_id: int, address: str) -> str:
        return f"{chain_id}:{address.lower()}"

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def slot(self, address: str, chain_id: int) -> AsyncIterator[IssuanceState]:
        """Hold the pair's lock for one sign, submit and confirm cycle."""
        key = self._get_key(chain_id, address)
        async with self._get_lock(key):
            state = self._states.setdefault(key, IssuanceState(address=address.lower(), chain_id=chain_id))
            yield state

    def record(self, state: IssuanceState, nonce: int) -> None:
        """Record a signed nonce before it is submitted.

        A nonce at or below the last submitted one means the previous
        request has not executed yet and this one would collide with it.
        """
        if state.last_nonce is not None and nonce <= state.last_nonce:
            raise NonceConflictError(
                f"Forwarder nonce did not advance for {state.address}: {nonce} after {state.last_nonce}",
                chain_id=state.chain_id,
            )
        state.last_nonce = nonce
        state.issued += 1
        state.last_issued_at = datetime.utcnow()

    def release(self, state: IssuanceState, nonce: int) -> None:
        """Forget a nonce whose request never reached the chain."""
        if state.last_nonce == nonce:
            state.last_nonce = nonce - 1 if nonce > 0 else None
            state.issued = max(0, state.issued - 1)

    def get_state(self, address: str, chain_id: int) -> Optional[IssuanceState]:
        return self._states.get(self._get_key(chain_id, address))
