"""
Funding scenarios.

Brings an account to fixed per-chain token and in-protocol balances from a
funder account before an end-to-end run.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .chain_types import ChainId
from .errors import PlanInvariantError
from .execution.models import ContractMethod, PlanKind, TransactionDescriptor, TransactionPlan
from .networks import NetworkRegistry
from .transfer.models import ChainBalance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FundingTarget:
    token: int = 0
    sedn: int = 0

    def __post_init__(self) -> None:
        if self.token < 0 or self.sedn < 0:
            raise PlanInvariantError(f"Funding targets must not be negative: {self}")


@dataclass
class FundingScenario:
    """Target balances per chain for one account."""
    targets: Dict[ChainId, FundingTarget] = field(default_factory=dict)

    def complete(self, networks: NetworkRegistry) -> "FundingScenario":
        """Every network with a Sedn deployment, unlisted ones targeting zero."""
        targets = {
            network.chain_id: self.targets.get(network.chain_id, FundingTarget())
            for network in networks.values()
            if network.sedn_address
        }
        for chain_id, target in self.targets.items():
            targets.setdefault(networks.require(chain_id).chain_id, target)
        return FundingScenario(targets=targets)


def plan_funding(
    scenario: FundingScenario,
    current: Mapping[int, ChainBalance],
    networks: NetworkRegistry,
    *,
    funder_address: str,
    account_address: str,
    funder_allowances: Optional[Mapping[int, int]] = None,
) -> TransactionPlan:
    """Descriptors the funder must run so ``account_address`` meets the scenario.

    Token shortfalls are sent with an ERC-20 transfer; in-protocol
    shortfalls with ``sednKnown`` to the account. Balances already above
    target are left alone.
    """
    allowances = funder_allowances or {}
    plan = TransactionPlan(kind=PlanKind.SEND)

    for chain_id, target in scenario.targets.items():
        network = networks.require(chain_id)
        balance = current.get(chain_id) or ChainBalance(chain_id=network.chain_id)

        token_gap = target.token - balance.token_balance
        sedn_gap = target.sedn - balance.sedn_balance
        if token_gap < 0 or sedn_gap < 0:
            logger.warning(
                "Account %s on %s is above target (token %s/%s, sedn %s/%s)",
                account_address,
                network.name,
                balance.token_balance,
                target.token,
                balance.sedn_balance,
                target.sedn,
            )

        if token_gap > 0:
            plan.descriptors.append(TransactionDescriptor(
                chain_id=network.chain_id,
                method=ContractMethod.TOKEN_TRANSFER,
                args=OrderedDict([("to", account_address), ("amount", token_gap)]),
                from_address=funder_address,
                to_address=network.require_token(),
                amount=token_gap,
            ))

        if sedn_gap > 0:
            depends_on = []
            allowance = allowances.get(chain_id, 0)
            if allowance < sedn_gap:
                approve = TransactionDescriptor(
                    chain_id=network.chain_id,
                    method=ContractMethod.INCREASE_ALLOWANCE,
                    args=OrderedDict([("spender", network.require_sedn()), ("addedValue", sedn_gap - allowance)]),
                    from_address=funder_address,
                    to_address=network.require_token(),
                )
                plan.descriptors.append(approve)
                depends_on.append(approve.descriptor_id)
            plan.descriptors.append(TransactionDescriptor(
                chain_id=network.chain_id,
                method=ContractMethod.SEDN_KNOWN,
                args=OrderedDict([("amount", sedn_gap), ("to", account_address)]),
                from_address=funder_address,
                to_address=network.require_sedn(),
                amount=sedn_gap,
                depends_on=depends_on,
            ))

    plan.requested_amount = plan.total_amount()
    return plan
