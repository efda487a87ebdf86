"""
Error Classification

Every failure raised by the transfer execution core is a ``SednError``.
Errors are split into recoverable (transient, retry may help) and
unrecoverable (terminal for the descriptor or plan).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    CONFIGURATION = "configuration"   # Unknown chain, missing address, undeployed forwarder
    SIGNATURE = "signature"           # Signing failures and signer mismatches
    NETWORK = "network"               # RPC / HTTP transport issues
    RELAY = "relay"                   # Relay webhook rejected or failed
    ROUTING = "routing"               # Bridge routing API errors
    TIMEOUT = "timeout"               # Polling deadline exceeded
    TRANSACTION_REVERTED = "transaction_reverted"
    CLAIM = "claim"                   # Claim protocol violations
    INSUFFICIENT_FUNDS = "insufficient_funds"
    VALIDATION = "validation"         # Plan invariants, malformed requests
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    descriptor_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class SednError(Exception):
    """Base class for all transfer execution errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        chain_id: Optional[int] = None,
        tx_hash: Optional[str] = None,
        descriptor_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
            chain_id=chain_id,
            tx_hash=tx_hash,
            descriptor_id=descriptor_id,
            details=details or {},
        )


class RecoverableError(SednError):
    """Transient failure; the operation may be retried."""

    recoverable = True


class UnrecoverableError(SednError):
    """Terminal failure; retrying the same request cannot succeed."""

    recoverable = False


# Configuration
class ConfigurationError(UnrecoverableError):
    """A chain, contract or verifier is not configured (or not deployed)."""

    category = ErrorCategory.CONFIGURATION


# Signing
class SigningError(UnrecoverableError):
    """The signer could not produce a signature."""

    category = ErrorCategory.SIGNATURE


class SignatureMismatchError(SigningError):
    """A signature recovered to a different address than the claimed signer."""

    def __init__(self, expected: str, recovered: str, **kwargs: Any):
        super().__init__(
            f"Signature recovers to {recovered}, expected {expected}",
            details={"expected": expected, "recovered": recovered},
            **kwargs,
        )
        self.expected = expected
        self.recovered = recovered


class VerifierMismatchError(SigningError):
    """The claim authorization was signed by someone other than the trusted verifier."""


# Network / relay
class RpcError(RecoverableError):
    """JSON-RPC transport failure or non-revert RPC error."""

    category = ErrorCategory.NETWORK


class RelayTransportError(RecoverableError):
    """Relay webhook was unreachable or returned a server error."""

    category = ErrorCategory.RELAY


class RelayError(UnrecoverableError):
    """Relay webhook returned a malformed or client-error response."""

    category = ErrorCategory.RELAY


class ForwarderRejectedError(UnrecoverableError):
    """The forwarder's verify() rejected the signed request."""

    category = ErrorCategory.SIGNATURE


class NonceConflictError(RecoverableError):
    """A forward request was signed against a nonce that is already in use."""

    category = ErrorCategory.SIGNATURE


class RoutingApiError(RecoverableError):
    """Bridge routing API failed or returned no usable route."""

    category = ErrorCategory.ROUTING


class RouteValidationError(UnrecoverableError):
    """The returned route does not match the requested receiver, amount or chain."""

    category = ErrorCategory.ROUTING


class ExecutionApiError(RecoverableError):
    """The execution-status API failed."""

    category = ErrorCategory.NETWORK


class PriceApiError(RecoverableError):
    """The native asset price lookup failed."""

    category = ErrorCategory.NETWORK


# Confirmation
class PollTimeoutError(RecoverableError):
    """A polling deadline passed. The transaction may still land later."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, waited_ms: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.waited_ms = waited_ms


class TransactionRevertedError(UnrecoverableError):
    """Transaction reverted on-chain (or the relayed inner call failed)."""

    category = ErrorCategory.TRANSACTION_REVERTED

    def __init__(self, message: str = "Transaction reverted", *, reason: Optional[str] = None, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        if reason:
            details["revert_reason"] = reason
        super().__init__(message, details=details, **kwargs)
        self.reason = reason


# Claims
class ClaimError(UnrecoverableError):
    category = ErrorCategory.CLAIM


class AlreadyClaimedError(ClaimError):
    """The secret has already been consumed on this chain."""


class ClaimExpiredError(ClaimError):
    """The claim authorization's validity window has passed."""


class ClaimStateError(ClaimError):
    """Illegal transition in the claim lifecycle."""


class SecretMismatchError(ClaimError):
    """The solution does not hash to the committed secret."""


# Planning
class InsufficientFundsError(UnrecoverableError):
    """Aggregate balances across chains cannot cover the requested amount."""

    category = ErrorCategory.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int, **kwargs: Any):
        super().__init__(
            f"Insufficient funds: required {required}, available {available}",
            details={"required": required, "available": available},
            **kwargs,
        )
        self.required = required
        self.available = available


class PlanInvariantError(UnrecoverableError):
    """A plan violated amount conservation or the hybrid split."""

    category = ErrorCategory.VALIDATION


_REVERT_PATTERNS = ("revert", "execution reverted", "out of gas", "invalid opcode")
_ALREADY_CLAIMED_PATTERNS = ("already claimed", "secret already used", "no funds", "nothing to claim")
_EXPIRED_PATTERNS = ("expired", "signature too old", "validuntil", "valid until")
_STALE_NONCE_PATTERNS = ("nonce too low", "invalid nonce", "nonce mismatch", "signature does not match")


def is_stale_nonce(error: Exception) -> bool:
    """True when a relay/forwarder rejection was caused by a nonce that moved on."""
    message = str(error).lower()
    return any(p in message for p in _STALE_NONCE_PATTERNS)


def classify_claim_failure(error: Exception) -> Exception:
    """Map a claim revert onto the claim-specific terminal errors.

    Returns the original error when no claim-specific pattern matches.
    """
    if isinstance(error, ClaimError):
        return error

    reason = getattr(error, "reason", None) or str(error)
    lowered = reason.lower()
    context = getattr(error, "context", None)
    kwargs: Dict[str, Any] = {}
    if context is not None:
        kwargs = {"chain_id": context.chain_id, "tx_hash": context.tx_hash, "descriptor_id": context.descriptor_id}

    if any(p in lowered for p in _ALREADY_CLAIMED_PATTERNS):
        return AlreadyClaimedError(f"Secret already claimed: {reason}", **kwargs)
    if any(p in lowered for p in _EXPIRED_PATTERNS):
        return ClaimExpiredError(f"Claim authorization expired: {reason}", **kwargs)
    return error


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Already-classified errors return their own context; transport exceptions
    from httpx and bare messages are matched by type and text.
    """
    if isinstance(error, SednError):
        return error.context

    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=status >= 500 or status == 429,
            details={"status_code": status},
        )

    if isinstance(error, httpx.RequestError):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    message = str(error).lower()

    if any(p in message for p in _ALREADY_CLAIMED_PATTERNS):
        return ErrorContext(category=ErrorCategory.CLAIM, recoverable=False)

    if any(p in message for p in _REVERT_PATTERNS):
        return ErrorContext(category=ErrorCategory.TRANSACTION_REVERTED, recoverable=False)

    if any(p in message for p in ("timeout", "timed out", "deadline")):
        return ErrorContext(category=ErrorCategory.TIMEOUT, recoverable=True)

    if any(p in message for p in ("connection", "network", "unreachable", "refused")):
        return ErrorContext(category=ErrorCategory.NETWORK, recoverable=True)

    if any(p in message for p in ("insufficient", "exceeds balance", "not enough")):
        return ErrorContext(category=ErrorCategory.INSUFFICIENT_FUNDS, recoverable=False)

    return ErrorContext(category=ErrorCategory.UNKNOWN, recoverable=False)
