"""
Transfer Orchestrator

Turns a TransferIntent into a TransactionPlan. Funds are taken chain by
chain in the intent's origin order, in-protocol balance first, then the
external token. Each contributing chain gets exactly one value-moving
descriptor, chosen by recipient knowledge and funding source:

    recipient   balance part   external part   method
    known       > 0            0               transferKnown
    known       0              > 0             sednKnown
    known       > 0            > 0             hybridKnown
    unknown     > 0            0               transferUnknown
    unknown     0              > 0             sednUnknown
    unknown     > 0            > 0             hybridUnknown

Pull-based methods are preceded by an increaseAllowance when the chain's
allowance does not cover the external part.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ...config import settings
from ..claim.secrets import generate_secret
from ..errors import InsufficientFundsError, PlanInvariantError
from ..execution.contracts import SednContract, TokenContract
from ..execution.models import (
    ContractMethod,
    PlanKind,
    SecretPair,
    TransactionDescriptor,
    TransactionPlan,
)
from ..execution.poller import BalanceComparator, poll_balance_change
from ..execution.rpc import RpcPool
from ..chain_types import ChainId
from ..networks import NetworkRegistry
from .models import ChainAllocation, ChainBalance, RecipientResolver, TransferIntent, as_address

logger = logging.getLogger(__name__)

_METHODS = {
    # (known, balance part > 0, external part > 0)
    (True, True, False): ContractMethod.TRANSFER_KNOWN,
    (True, False, True): ContractMethod.SEDN_KNOWN,
    (True, True, True): ContractMethod.HYBRID_KNOWN,
    (False, True, False): ContractMethod.TRANSFER_UNKNOWN,
    (False, False, True): ContractMethod.SEDN_UNKNOWN,
    (False, True, True): ContractMethod.HYBRID_UNKNOWN,
}

HYBRID_METHODS = frozenset({ContractMethod.HYBRID_KNOWN, ContractMethod.HYBRID_UNKNOWN})


def allocate(amount: int, balances: Sequence[ChainBalance]) -> List[ChainAllocation]:
    """Split ``amount`` over ``balances`` in order, in-protocol funds first.

    Raises:
        InsufficientFundsError: The balances together cannot cover ``amount``.
    """
    available = sum(b.available for b in balances)
    if available < amount:
        raise InsufficientFundsError(required=amount, available=available)

    allocations = []
    remaining = amount
    for balance in balances:
        if remaining == 0:
            break
        balance_part = min(remaining, balance.sedn_balance)
        remaining -= balance_part
        external_part = min(remaining, balance.token_balance)
        remaining -= external_part
        if balance_part or external_part:
            allocations.append(ChainAllocation(
                chain_id=balance.chain_id,
                balance_part=balance_part,
                external_part=external_part,
            ))
    return allocations


def check_hybrid_split(descriptor: TransactionDescriptor) -> None:
    """``_amount + balanceAmount`` must equal the descriptor's amount."""
    if descriptor.method not in HYBRID_METHODS:
        return
    split = int(descriptor.args["amount"]) + int(descriptor.args["balanceAmount"])
    if split != descriptor.amount:
        raise PlanInvariantError(
            f"Hybrid split {descriptor.args['amount']} + {descriptor.args['balanceAmount']} != {descriptor.amount}",
            chain_id=descriptor.chain_id,
            descriptor_id=descriptor.descriptor_id,
        )


def check_conservation(plan: TransactionPlan) -> None:
    """Value-moving descriptors must add up to the requested amount exactly."""
    total = plan.total_amount()
    if total != plan.requested_amount:
        raise PlanInvariantError(
            f"Plan moves {total} but {plan.requested_amount} was requested",
            details={"plan_id": plan.plan_id},
        )


def reconcile(plan: TransactionPlan, deltas: Mapping[object, int]) -> int:
    """Check observed balance movements against the plan.

    ``deltas`` maps whatever key the caller observed (chain, or chain and
    address) to the amount that moved there. Returns the total.
    """
    total = sum(deltas.values())
    if total != plan.requested_amount:
        raise PlanInvariantError(
            f"Observed movement {total} does not match requested {plan.requested_amount}",
            details={"plan_id": plan.plan_id, "deltas": {str(k): v for k, v in deltas.items()}},
        )
    return total


class TransferOrchestrator:
    """Plans sends across the sender's chains."""

    def __init__(
        self,
        networks: NetworkRegistry,
        *,
        resolver: Optional[RecipientResolver] = None,
        rpc_pool: Optional[RpcPool] = None,
    ):
        self.networks = networks
        self.resolver = resolver
        self.rpc_pool = rpc_pool or RpcPool(networks, timeout_s=settings.request_timeout_seconds)

    async def resolve_recipient(self, identifier: str) -> Optional[str]:
        """Address for ``identifier``, or None when the recipient is unknown."""
        address = as_address(identifier)
        if address is not None:
            return address
        if self.resolver is None:
            return None
        return await self.resolver.resolve(identifier)

    async def read_balances(self, intent: TransferIntent) -> List[ChainBalance]:
        """Read token, in-protocol and allowance figures for every origin chain."""

        async def _read(chain_id: int) -> ChainBalance:
            network = self.networks.require(chain_id)
            rpc = self.rpc_pool.for_chain(chain_id)
            token = TokenContract(rpc, network.require_token())
            sedn = SednContract(rpc, network.require_sedn())
            token_balance, sedn_balance, allowance = await asyncio.gather(
                token.balance_of(intent.sender_address),
                sedn.balance_of(intent.sender_address),
                token.allowance(intent.sender_address, sedn.address),
            )
            return ChainBalance(
                chain_id=network.chain_id,
                token_balance=token_balance,
                sedn_balance=sedn_balance,
                allowance=allowance,
            )

        return list(await asyncio.gather(*(_read(c) for c in intent.origin_chains)))

    async def _total_balance(self, chain_id: int, address: str) -> int:
        network = self.networks.require(chain_id)
        rpc = self.rpc_pool.for_chain(chain_id)
        token_balance, sedn_balance = await asyncio.gather(
            TokenContract(rpc, network.require_token()).balance_of(address),
            SednContract(rpc, network.require_sedn()).balance_of(address),
        )
        return token_balance + sedn_balance

    async def snapshot_balances(self, address: str, chain_ids: Iterable[int]) -> Dict[ChainId, int]:
        """Token plus in-protocol balance per chain, taken before execution."""
        chains = list(chain_ids)
        totals = await asyncio.gather(*(self._total_balance(c, address) for c in chains))
        return {ChainId(c): t for c, t in zip(chains, totals)}

    async def await_movement(
        self,
        address: str,
        baselines: Mapping[ChainId, int],
        *,
        max_wait_ms: Optional[int] = None,
        interval_s: Optional[float] = None,
    ) -> Dict[ChainId, int]:
        """Wait for the sender's balance to move on every chain; return the amount that left.

        Feed the result to :func:`reconcile`.
        """

        async def _moved(chain_id: ChainId, baseline: int) -> int:
            delta = await poll_balance_change(
                lambda: self._total_balance(chain_id, address),
                baseline,
                settings.balance_timeout_ms if max_wait_ms is None else max_wait_ms,
                comparator=BalanceComparator.CHANGED,
                interval_s=settings.balance_poll_interval_s if interval_s is None else interval_s,
            )
            return -delta

        chains = list(baselines)
        moved = await asyncio.gather(*(_moved(c, baselines[c]) for c in chains))
        return dict(zip(chains, moved))

    async def plan(self, intent: TransferIntent) -> TransactionPlan:
        """Resolve the recipient, read balances and plan."""
        resolution, balances = await asyncio.gather(
            self.resolve_recipient(intent.recipient_identifier),
            self.read_balances(intent),
        )
        return self.plan_transfer(intent, balances, resolution)

    def plan_transfer(
        self,
        intent: TransferIntent,
        chain_balances: Iterable[ChainBalance],
        resolution: Optional[str],
        secret: Optional[SecretPair] = None,
    ) -> TransactionPlan:
        """Build the plan for ``intent``.

        ``resolution`` is the recipient's address, or None when the
        recipient is unknown and must claim with a secret.

        Raises:
            InsufficientFundsError: Balances cannot cover the amount; no plan is built.
            PlanInvariantError: A hybrid split or the total does not add up.
        """
        by_chain: Dict[int, ChainBalance] = {b.chain_id: b for b in chain_balances}
        ordered = [by_chain[c] for c in intent.origin_chains if c in by_chain]
        allocations = allocate(intent.amount, ordered)

        known = resolution is not None
        plan = TransactionPlan(kind=PlanKind.SEND, requested_amount=intent.amount)
        if not known:
            secret = secret or generate_secret()
            plan.secrets.append(secret)

        for allocation in allocations:
            network = self.networks.require(allocation.chain_id)
            sedn_address = network.require_sedn()
            method = _METHODS[(known, allocation.balance_part > 0, allocation.external_part > 0)]

            depends_on: List[str] = []
            if method.pulls_tokens:
                current = by_chain[allocation.chain_id].allowance
                if current < allocation.external_part:
                    approve = TransactionDescriptor(
                        chain_id=network.chain_id,
                        method=ContractMethod.INCREASE_ALLOWANCE,
                        args=OrderedDict([
                            ("spender", sedn_address),
                            ("addedValue", allocation.external_part - current),
                        ]),
                        from_address=intent.sender_address,
                        to_address=network.require_token(),
                    )
                    plan.descriptors.append(approve)
                    depends_on.append(approve.descriptor_id)

            descriptor = TransactionDescriptor(
                chain_id=network.chain_id,
                method=method,
                args=self._args(method, allocation, resolution, secret),
                from_address=intent.sender_address,
                to_address=sedn_address,
                amount=allocation.total,
                solution=None if known else secret.solution,
                depends_on=depends_on,
            )
            check_hybrid_split(descriptor)
            plan.descriptors.append(descriptor)

        check_conservation(plan)
        logger.info(
            "Planned %s to %s recipient over %d chain(s): %s",
            intent.amount,
            "known" if known else "unknown",
            len(allocations),
            ", ".join(d.method.value for d in plan.descriptors),
        )
        return plan

    @staticmethod
    def _args(
        method: ContractMethod,
        allocation: ChainAllocation,
        resolution: Optional[str],
        secret: Optional[SecretPair],
    ) -> Dict[str, Any]:
        target = ("to", resolution) if resolution is not None else ("secret", secret.secret)
        if method in HYBRID_METHODS:
            return OrderedDict([
                ("amount", allocation.external_part),
                ("balanceAmount", allocation.balance_part),
                target,
            ])
        return OrderedDict([("amount", allocation.total), target])
