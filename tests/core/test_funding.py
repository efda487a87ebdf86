"""
Tests for funding scenario planning.
"""

import pytest

from conftest import RECIPIENT, SENDER
from sedn.core.chain_types import ARBITRUM, POLYGON
from sedn.core.errors import PlanInvariantError
from sedn.core.execution.models import ContractMethod
from sedn.core.funding import FundingScenario, FundingTarget, plan_funding
from sedn.core.transfer import ChainBalance


class TestFundingScenario:
    def test_complete_fills_deployed_networks(self, networks):
        scenario = FundingScenario(targets={POLYGON: FundingTarget(token=100)}).complete(networks)
        assert scenario.targets[POLYGON].token == 100
        assert scenario.targets[ARBITRUM] == FundingTarget()

    def test_negative_target(self):
        with pytest.raises(PlanInvariantError):
            FundingTarget(token=-1)


class TestPlanFunding:
    def test_tops_up_token_and_protocol_balance(self, networks):
        scenario = FundingScenario(targets={POLYGON: FundingTarget(token=500, sedn=300)})
        current = {POLYGON: ChainBalance(POLYGON, token_balance=200, sedn_balance=100)}

        plan = plan_funding(
            scenario,
            current,
            networks,
            funder_address=SENDER,
            account_address=RECIPIENT,
            funder_allowances={POLYGON: 50},
        )

        transfer, approve, send = plan.descriptors
        assert transfer.method == ContractMethod.TOKEN_TRANSFER
        assert list(transfer.args.items()) == [("to", RECIPIENT), ("amount", 300)]
        assert approve.method == ContractMethod.INCREASE_ALLOWANCE
        assert approve.args["addedValue"] == 150
        assert send.method == ContractMethod.SEDN_KNOWN
        assert send.depends_on == [approve.descriptor_id]
        assert plan.requested_amount == 500

    def test_at_target_is_a_no_op(self, networks):
        scenario = FundingScenario(targets={ARBITRUM: FundingTarget(token=10, sedn=10)})
        current = {ARBITRUM: ChainBalance(ARBITRUM, token_balance=50, sedn_balance=10)}

        plan = plan_funding(scenario, current, networks, funder_address=SENDER, account_address=RECIPIENT)

        assert plan.descriptors == []
        assert plan.requested_amount == 0

    def test_missing_balance_treated_as_empty(self, networks):
        scenario = FundingScenario(targets={ARBITRUM: FundingTarget(sedn=10)})

        plan = plan_funding(
            scenario,
            {},
            networks,
            funder_address=SENDER,
            account_address=RECIPIENT,
            funder_allowances={ARBITRUM: 10},
        )

        assert [d.method for d in plan.descriptors] == [ContractMethod.SEDN_KNOWN]
