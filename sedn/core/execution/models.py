"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from ..chain_types import ChainId
from ..networks import ForwarderSchema


class ContractMethod(str, Enum):
    """Contract methods a descriptor may invoke."""
    INCREASE_ALLOWANCE = "increaseAllowance"
    TOKEN_TRANSFER = "transfer"
    SEDN_KNOWN = "sednKnown"
    SEDN_UNKNOWN = "sednUnknown"
    TRANSFER_KNOWN = "transferKnown"
    TRANSFER_UNKNOWN = "transferUnknown"
    HYBRID_KNOWN = "hybridKnown"
    HYBRID_UNKNOWN = "hybridUnknown"
    WITHDRAW = "withdraw"
    BRIDGE_WITHDRAW = "bridgeWithdraw"
    CLAIM = "claim"
    BRIDGE_CLAIM = "bridgeClaim"

    @property
    def moves_value(self) -> bool:
        return self is not ContractMethod.INCREASE_ALLOWANCE

    @property
    def pulls_tokens(self) -> bool:
        """Methods that transferFrom the sender's external token balance."""
        return self in _PULLING_METHODS


_PULLING_METHODS = frozenset({
    ContractMethod.SEDN_KNOWN,
    ContractMethod.SEDN_UNKNOWN,
    ContractMethod.HYBRID_KNOWN,
    ContractMethod.HYBRID_UNKNOWN,
})


class DescriptorStatus(str, Enum):
    """Descriptor lifecycle status."""
    PENDING = "pending"          # Planned, not yet signed
    SIGNED = "signed"            # Forward request signed
    SUBMITTED = "submitted"      # Accepted by relay / broadcast
    CONFIRMED = "confirmed"      # Receipt observed with status 1
    FAILED = "failed"            # Terminal failure
    TIMEOUT = "timeout"          # Poll deadline passed; tx may still land

    @property
    def is_terminal(self) -> bool:
        return self in (DescriptorStatus.CONFIRMED, DescriptorStatus.FAILED, DescriptorStatus.TIMEOUT)


class PlanKind(str, Enum):
    SEND = "send"
    CLAIM = "claim"
    WITHDRAW = "withdraw"


class PlanStatus(str, Enum):
    """Mirrors the execution API's execution status values."""
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class Receipt:
    """Subset of an EVM transaction receipt."""
    tx_hash: str
    status: int
    block_number: int
    gas_used: int = 0
    effective_gas_price: int = 0
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @property
    def cost_wei(self) -> int:
        """Gas paid for the transaction.

        Receipts without ``effectiveGasPrice`` (optimism-goerli) are charged
        at 1 wei per gas.
        """
        return self.gas_used * (self.effective_gas_price or 1)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            tx_hash=data.get("transactionHash", ""),
            status=int(data.get("status", "0x0"), 16),
            block_number=int(data.get("blockNumber", "0x0"), 16),
            gas_used=int(data.get("gasUsed", "0x0"), 16),
            effective_gas_price=int(data.get("effectiveGasPrice", "0x0"), 16),
            logs=list(data.get("logs") or []),
        )


@dataclass
class SignedRequest:
    """An EIP-712 signed forward request, ready for the relay."""
    domain: Dict[str, Any]
    types: Dict[str, List[Dict[str, str]]]
    primary_type: str
    message: Dict[str, Any]
    signature: str
    schema: ForwarderSchema

    @property
    def signer(self) -> str:
        return self.message["from"]

    @property
    def nonce(self) -> int:
        return int(self.message["nonce"])

    @property
    def gas(self) -> int:
        return int(self.message["gas"])

    def typed_data(self) -> Dict[str, Any]:
        """Full EIP-712 document as consumed by eth_account."""
        return {
            "types": self.types,
            "domain": self.domain,
            "primaryType": self.primary_type,
            "message": self.message,
        }

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the relay webhook. Integers are sent as decimal strings."""
        request = {
            key: (str(value) if isinstance(value, int) else value)
            for key, value in self.message.items()
        }
        return {"request": request, "signature": self.signature}


@dataclass
class TransactionDescriptor:
    """One contract call to be signed, relayed and confirmed."""
    chain_id: ChainId
    method: ContractMethod
    args: Dict[str, Any]                        # Ordered named arguments
    from_address: str
    to_address: str                             # Target contract
    amount: int = 0                             # Value moved by this call (smallest units)
    value: int = 0                              # Native value attached
    solution: Optional[str] = None              # Unknown-recipient sends
    depends_on: List[str] = field(default_factory=list)
    descriptor_id: str = field(default_factory=lambda: f"dsc_{uuid.uuid4().hex[:12]}")

    # Execution state
    status: DescriptorStatus = DescriptorStatus.PENDING
    signed_request: Optional[SignedRequest] = None
    tx_hash: Optional[str] = None
    receipt: Optional[Receipt] = None
    error: Optional[str] = None
    attempts: int = 0
    cost_usd: Optional[Decimal] = None          # Set when a price provider is configured

    def to_dict(self) -> Dict[str, Any]:
        """Serialised form used by the execution API (ITransaction)."""
        data: Dict[str, Any] = {
            "type": self.method.value,
            "chainId": self.chain_id,
            "to": self.to_address,
            "value": str(self.value),
            "method": self.method.value,
            "args": [_jsonable(v) for v in self.args.values()],
            "from": self.from_address,
        }
        if self.solution is not None:
            data["solution"] = self.solution
        if self.signed_request is not None:
            data["signedTx"] = self.signed_request.to_payload()
        return data


@dataclass
class SecretPair:
    solution: str
    secret: str                                 # 0x-prefixed keccak256(utf8(solution))


@dataclass
class TransactionPlan:
    """Ordered descriptors produced by an orchestrator."""
    kind: PlanKind
    descriptors: List[TransactionDescriptor] = field(default_factory=list)
    requested_amount: int = 0
    secrets: List[SecretPair] = field(default_factory=list)
    plan_id: str = field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.utcnow)

    def total_amount(self) -> int:
        return sum(d.amount for d in self.descriptors if d.method.moves_value)

    def by_chain(self) -> Dict[ChainId, List[TransactionDescriptor]]:
        grouped: Dict[ChainId, List[TransactionDescriptor]] = {}
        for descriptor in self.descriptors:
            grouped.setdefault(descriptor.chain_id, []).append(descriptor)
        return grouped

    def get(self, descriptor_id: str) -> TransactionDescriptor:
        for descriptor in self.descriptors:
            if descriptor.descriptor_id == descriptor_id:
                return descriptor
        raise KeyError(descriptor_id)

    def solutions(self) -> List[Tuple[str, str]]:
        return [(s.solution, s.secret) for s in self.secrets]

    @property
    def status(self) -> PlanStatus:
        statuses = [d.status for d in self.descriptors]
        if any(s == DescriptorStatus.FAILED for s in statuses):
            return PlanStatus.FAILED
        if statuses and all(s == DescriptorStatus.CONFIRMED for s in statuses):
            return PlanStatus.EXECUTED
        return PlanStatus.PENDING


def _jsonable(value: Any) -> Any:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value
