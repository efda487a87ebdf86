"""
Claim Protocol

Tracks secrets committed by transfers to unknown recipients and turns a
revealed solution into claim plans:

    committed -> authorized -> claimed
                             -> expired

The contract enforces single use of a secret. This layer mirrors that by
treating "already claimed" as terminal and never re-planning a claimed or
expired record.
"""

import logging
import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ...config import settings
from ...logging_config import redact
from ...providers.socket import SocketProvider
from ..bridging import fetch_route, route_query
from ..errors import (
    AlreadyClaimedError,
    ClaimExpiredError,
    ClaimStateError,
    ConfigurationError,
    SecretMismatchError,
    SignatureMismatchError,
    VerifierMismatchError,
    classify_claim_failure,
)
from ..execution.contracts import SednContract
from ..execution.executor import CLAIM_METHODS, PlanResult
from ..execution.models import (
    ContractMethod,
    DescriptorStatus,
    PlanKind,
    SecretPair,
    TransactionDescriptor,
    TransactionPlan,
)
from ..execution.rpc import RpcPool
from ..execution.signer import LocalSigner, Signer
from ..execution.signing import (
    ClaimAuthorization,
    ClaimHashLayout,
    recover_claim_signer,
    sign_claim_authorization,
)
from ..networks import NetworkRegistry
from .models import ALLOWED_TRANSITIONS, ClaimRecord, ClaimState, claim_key
from .secrets import solution_matches

logger = logging.getLogger(__name__)

UNKNOWN_RECIPIENT_METHODS = frozenset({
    ContractMethod.SEDN_UNKNOWN,
    ContractMethod.TRANSFER_UNKNOWN,
    ContractMethod.HYBRID_UNKNOWN,
})


class ClaimProtocol:
    """In-memory claim registry and claim plan builder."""

    def __init__(
        self,
        networks: NetworkRegistry,
        *,
        rpc_pool: Optional[RpcPool] = None,
        routing: Optional[SocketProvider] = None,
        trusted_verifier_address: Optional[str] = None,
        validity_seconds: Optional[int] = None,
        testnet_mode: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.networks = networks
        self.rpc_pool = rpc_pool or RpcPool(networks, timeout_s=settings.request_timeout_seconds)
        self.routing = routing
        self.trusted_verifier_address = trusted_verifier_address or settings.trusted_verifier_address
        self.validity_seconds = validity_seconds or settings.claim_validity_seconds
        self.testnet_mode = settings.bridge_testnet_mode if testnet_mode is None else testnet_mode
        self._clock = clock
        self._records: Dict[str, ClaimRecord] = OrderedDict()

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else now

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(
        self,
        *,
        secret: str,
        chain_id: int,
        amount: int,
        sender_address: str,
        solution: Optional[str] = None,
        commit_tx_hash: Optional[str] = None,
    ) -> ClaimRecord:
        """Record a secret committed on ``chain_id`` with ``amount`` locked."""
        if amount <= 0:
            raise ClaimStateError(f"Secret {secret} has no locked amount on chain {chain_id}", chain_id=chain_id)
        if solution is not None and not solution_matches(solution, secret):
            raise SecretMismatchError("Solution does not hash to the committed secret", chain_id=chain_id)

        key = claim_key(secret, chain_id)
        existing = self._records.get(key)
        if existing is not None:
            if commit_tx_hash and existing.commit_tx_hash == commit_tx_hash:
                return existing
            raise ClaimStateError(f"Secret {secret} is already committed on chain {chain_id}", chain_id=chain_id)

        record = ClaimRecord(
            secret=secret,
            chain_id=self.networks.require(chain_id).chain_id,
            amount=amount,
            sender_address=sender_address,
            solution=solution,
            commit_tx_hash=commit_tx_hash,
        )
        self._records[key] = record
        logger.info("Committed secret %s… on chain %s for %s", secret[:10], chain_id, amount)
        return record

    def commit(self, plan: TransactionPlan) -> List[ClaimRecord]:
        """Register every confirmed unknown-recipient descriptor of a send plan."""
        if plan.kind is not PlanKind.SEND:
            raise ClaimStateError(f"Only send plans commit secrets, got {plan.kind.value}")

        records = []
        for descriptor in plan.descriptors:
            if descriptor.method not in UNKNOWN_RECIPIENT_METHODS:
                continue
            if descriptor.status != DescriptorStatus.CONFIRMED:
                logger.warning(
                    "Skipping %s on chain %s: descriptor is %s",
                    descriptor.descriptor_id,
                    descriptor.chain_id,
                    descriptor.status.value,
                )
                continue
            records.append(self.register(
                secret=descriptor.args["secret"],
                chain_id=descriptor.chain_id,
                amount=descriptor.amount,
                sender_address=descriptor.from_address,
                solution=descriptor.solution,
                commit_tx_hash=descriptor.tx_hash,
            ))
        return records

    def get(self, secret: str, chain_id: int) -> ClaimRecord:
        record = self._records.get(claim_key(secret, chain_id))
        if record is None:
            raise ClaimStateError(f"No commitment for secret {secret} on chain {chain_id}", chain_id=chain_id)
        return record

    def records_for(self, secret: str) -> List[ClaimRecord]:
        return [r for r in self._records.values() if r.secret.lower() == secret.lower()]

    def _check_transition(self, record: ClaimRecord, state: ClaimState) -> None:
        if state not in ALLOWED_TRANSITIONS[record.state]:
            if record.state is ClaimState.CLAIMED:
                raise AlreadyClaimedError(
                    f"Secret {record.secret} was already claimed on chain {record.chain_id}",
                    chain_id=record.chain_id,
                    tx_hash=record.claim_tx_hash,
                )
            raise ClaimStateError(
                f"Cannot move claim from {record.state.value} to {state.value}",
                chain_id=record.chain_id,
            )

    def _transition(self, record: ClaimRecord, state: ClaimState) -> None:
        self._check_transition(record, state)
        logger.debug("Claim %s: %s -> %s", record.key, record.state.value, state.value)
        record.state = state
        record.updated_at = datetime.utcnow()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize(
        self,
        secret: str,
        chain_id: int,
        receiver_address: str,
        verifier: Optional[Signer] = None,
        *,
        now: Optional[int] = None,
        ttl_s: Optional[int] = None,
        layout: ClaimHashLayout = ClaimHashLayout.AMOUNT_NONCE,
    ) -> ClaimAuthorization:
        """Have the trusted verifier bind ``secret`` on ``chain_id`` to ``receiver_address``.

        The canonical layout includes the Sedn contract's current nonce,
        which is read from chain at signing time.
        """
        if not self.trusted_verifier_address:
            raise ConfigurationError("Trusted verifier address is not configured")
        if verifier is None:
            if not settings.verifier_private_key:
                raise ConfigurationError("No verifier signer given and no verifier key configured")
            verifier = LocalSigner(settings.verifier_private_key)
        if verifier.address.lower() != self.trusted_verifier_address.lower():
            raise VerifierMismatchError(
                f"Signer {verifier.address} is not the trusted verifier {self.trusted_verifier_address}",
                chain_id=chain_id,
            )

        record = self.get(secret, chain_id)
        self._check_transition(record, ClaimState.AUTHORIZED)

        nonce = 0
        if layout is ClaimHashLayout.AMOUNT_NONCE:
            network = self.networks.require(chain_id)
            sedn = SednContract(self.rpc_pool.for_chain(chain_id), network.require_sedn())
            nonce = await sedn.nonce()

        authorization = sign_claim_authorization(
            verifier,
            receiver_address=receiver_address,
            valid_until=self._now(now) + (ttl_s or self.validity_seconds),
            secret=record.secret,
            amount=record.amount,
            nonce=nonce,
            layout=layout,
        )
        recovered = recover_claim_signer(authorization)
        if recovered.lower() != self.trusted_verifier_address.lower():
            raise SignatureMismatchError(self.trusted_verifier_address, recovered, chain_id=chain_id)

        self._transition(record, ClaimState.AUTHORIZED)
        record.authorization = authorization
        record.receiver_address = authorization.receiver_address
        logger.info(
            "Authorized claim of %s on chain %s for %s until %s",
            record.amount,
            chain_id,
            authorization.receiver_address,
            authorization.valid_until,
        )
        return authorization

    def expire_stale(self, now: Optional[int] = None) -> List[ClaimRecord]:
        """Move authorized records past their validUntil to ``expired``."""
        current = self._now(now)
        expired = []
        for record in self._records.values():
            if record.state is ClaimState.AUTHORIZED and record.authorization.is_expired(current):
                self._transition(record, ClaimState.EXPIRED)
                expired.append(record)
        return expired

    # ------------------------------------------------------------------
    # Claim plans
    # ------------------------------------------------------------------

    def _claimable(self, secret: str, solution: str, claimant_address: str, chain_id: int, now: int) -> ClaimRecord:
        record = self.get(secret, chain_id)
        if not solution_matches(solution, record.secret):
            raise SecretMismatchError("Solution does not hash to the committed secret", chain_id=chain_id)
        if record.state is ClaimState.CLAIMED:
            raise AlreadyClaimedError(
                f"Secret {secret} was already claimed on chain {chain_id}",
                chain_id=chain_id,
                tx_hash=record.claim_tx_hash,
            )
        if record.state is not ClaimState.AUTHORIZED:
            raise ClaimStateError(f"Claim on chain {chain_id} is {record.state.value}, not authorized", chain_id=chain_id)

        authorization = record.authorization
        if authorization.is_expired(now):
            self._transition(record, ClaimState.EXPIRED)
            raise ClaimExpiredError(
                f"Claim authorization expired at {authorization.valid_until}",
                chain_id=chain_id,
            )
        if authorization.receiver_address.lower() != claimant_address.lower():
            raise ClaimStateError(
                f"Authorization is bound to {authorization.receiver_address}, not {claimant_address}",
                chain_id=chain_id,
            )
        return record

    def _claim_args(self, solution: str, record: ClaimRecord) -> Dict[str, Any]:
        authorization = record.authorization
        return OrderedDict([
            ("solution", solution),
            ("secret", record.secret),
            ("validUntil", authorization.valid_until),
            ("v", authorization.v),
            ("r", authorization.r),
            ("s", authorization.s),
        ])

    def build_claim_plan(
        self,
        secret: str,
        solution: str,
        claimant_address: str,
        *,
        chain_ids: Optional[List[int]] = None,
        now: Optional[int] = None,
    ) -> TransactionPlan:
        """One ``claim`` descriptor per authorized chain holding ``secret``."""
        current = self._now(now)
        targets = chain_ids or [r.chain_id for r in self.records_for(secret)]
        if not targets:
            raise ClaimStateError(f"No commitment for secret {secret}")

        plan = TransactionPlan(kind=PlanKind.CLAIM, secrets=[SecretPair(solution=solution, secret=secret)])
        for chain_id in targets:
            record = self._claimable(secret, solution, claimant_address, chain_id, current)
            network = self.networks.require(chain_id)
            plan.descriptors.append(TransactionDescriptor(
                chain_id=network.chain_id,
                method=ContractMethod.CLAIM,
                args=self._claim_args(solution, record),
                from_address=claimant_address,
                to_address=network.require_sedn(),
                amount=record.amount,
            ))
        plan.requested_amount = plan.total_amount()
        logger.info(
            "Planned claim of %s with solution %s on chain(s) %s",
            plan.requested_amount,
            redact(solution),
            ", ".join(str(d.chain_id) for d in plan.descriptors),
        )
        return plan

    async def build_bridge_claim_plan(
        self,
        secret: str,
        solution: str,
        claimant_address: str,
        *,
        chain_id: int,
        destination_chain_id: int,
        destination_address: Optional[str] = None,
        now: Optional[int] = None,
    ) -> TransactionPlan:
        """A ``bridgeClaim`` that releases the locked amount straight into a bridge.

        The route is fetched and validated before the descriptor is built.
        """
        if self.routing is None:
            raise ConfigurationError("Bridge claims need a routing provider")

        record = self._claimable(secret, solution, claimant_address, chain_id, self._now(now))
        network = self.networks.require(chain_id)
        recipient = destination_address or claimant_address
        query = route_query(
            self.networks,
            chain_id,
            destination_chain_id,
            testnet_mode=self.testnet_mode,
            testnet_source_chain_id=settings.testnet_route_source_chain_id,
            testnet_destination_chain_id=settings.testnet_route_destination_chain_id,
        )
        route = await fetch_route(
            self.routing,
            query,
            amount=record.amount,
            user_address=network.require_sedn(),
            recipient=recipient,
        )

        args = self._claim_args(solution, record)
        args["userRequest"] = route.user_request.as_tuple()
        args["bridgeImpl"] = route.bridge_impl
        descriptor = TransactionDescriptor(
            chain_id=network.chain_id,
            method=ContractMethod.BRIDGE_CLAIM,
            args=args,
            from_address=claimant_address,
            to_address=network.require_sedn(),
            amount=record.amount,
        )
        return TransactionPlan(
            kind=PlanKind.CLAIM,
            descriptors=[descriptor],
            requested_amount=record.amount,
            secrets=[SecretPair(solution=solution, secret=secret)],
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def mark_claimed(self, secret: str, chain_id: int, tx_hash: Optional[str] = None) -> ClaimRecord:
        record = self.get(secret, chain_id)
        self._transition(record, ClaimState.CLAIMED)
        record.claim_tx_hash = tx_hash
        return record

    def apply_result(self, result: PlanResult) -> None:
        """Update claim records from an executed claim plan.

        A revert reporting the secret as already claimed still leaves the
        record claimed, since that is what the chain says.
        """
        for descriptor in result.plan.descriptors:
            if descriptor.method not in CLAIM_METHODS:
                continue
            record = self.get(descriptor.args["secret"], descriptor.chain_id)
            if descriptor.status == DescriptorStatus.CONFIRMED:
                self.mark_claimed(record.secret, record.chain_id, descriptor.tx_hash)
                continue

            error = result.errors.get(descriptor.descriptor_id)
            if error is None:
                continue
            error = classify_claim_failure(error)
            if isinstance(error, AlreadyClaimedError) and record.state is not ClaimState.CLAIMED:
                self._transition(record, ClaimState.CLAIMED)
            elif isinstance(error, ClaimExpiredError) and not record.state.is_terminal:
                self._transition(record, ClaimState.EXPIRED)
