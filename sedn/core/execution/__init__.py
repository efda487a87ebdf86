"""
Transaction Execution Layer

Signs, relays and confirms contract calls on any configured chain:
- PlanExecutor: Runs a TransactionPlan, concurrently across chains
- NonceSequencer: Serializes signing per (signer, chain)
- RelayClient: Submits forward requests to the relay, or directly
- build_meta_tx_request: EIP-712 forward request signing

Usage:
    from sedn.core.execution import PlanExecutor, LocalSigner

    executor = PlanExecutor(networks)
    result = await executor.execute(plan, LocalSigner(private_key))
    if not result.is_success:
        for descriptor_id, error in result.errors.items():
            ...
"""

from .models import (
    ContractMethod,
    DescriptorStatus,
    PlanKind,
    PlanStatus,
    Receipt,
    SecretPair,
    SignedRequest,
    TransactionDescriptor,
    TransactionPlan,
)

from .signer import LocalSigner, Signer

from .signing import (
    ClaimAuthorization,
    ClaimHashLayout,
    build_meta_tx_request,
    recover_claim_signer,
    recover_signer,
    sign_claim_authorization,
)

from .poller import (
    BalanceComparator,
    poll_balance_change,
    poll_execution_status,
    poll_receipt,
)

from .relay import RelayClient
from .sequencer import NonceSequencer
from .executor import PlanExecutor, PlanResult

__all__ = [
    # Models
    "ContractMethod",
    "DescriptorStatus",
    "PlanKind",
    "PlanStatus",
    "Receipt",
    "SecretPair",
    "SignedRequest",
    "TransactionDescriptor",
    "TransactionPlan",
    # Signing
    "Signer",
    "LocalSigner",
    "ClaimAuthorization",
    "ClaimHashLayout",
    "build_meta_tx_request",
    "recover_signer",
    "sign_claim_authorization",
    "recover_claim_signer",
    # Polling
    "BalanceComparator",
    "poll_receipt",
    "poll_balance_change",
    "poll_execution_status",
    # Submission
    "RelayClient",
    "NonceSequencer",
    "PlanExecutor",
    "PlanResult",
]
