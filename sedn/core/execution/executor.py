"""
Plan executor.

Runs a TransactionPlan through the sign -> relay -> confirm pipeline:

- descriptors on different chains are issued concurrently
- descriptors on the same chain run strictly in order, each one signed
  against the forwarder nonce left by the previous confirmation
- a terminal failure stops the rest of that chain's sequence and marks
  the plan failed immediately; other chains keep running
- a poll timeout is not a failure: the descriptor is left in ``timeout``
  and the plan stays pending
- transient errors are retried while nothing can have landed on chain;
  once retries run out the chain halts and the plan stays pending
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ...config import settings
from ...logging_config import bind_execution_context
from ...providers.coingecko import CoingeckoProvider
from ..errors import (
    ConfigurationError,
    ForwarderRejectedError,
    PollTimeoutError,
    RecoverableError,
    SednError,
    TransactionRevertedError,
    UnrecoverableError,
    classify_claim_failure,
    classify_error,
    is_stale_nonce,
)
from ..networks import NetworkConfig, NetworkRegistry
from .abi import encode_method
from .contracts import ForwarderContract
from .models import (
    ContractMethod,
    DescriptorStatus,
    PlanStatus,
    SignedRequest,
    TransactionDescriptor,
    TransactionPlan,
)
from .poller import Clock, monotonic_ms, poll_execution_status, poll_receipt, relayed_call_failed
from .relay import RelayClient
from .rpc import RpcClient, RpcPool
from .sequencer import IssuanceState, NonceSequencer
from .signer import Signer
from .signing import build_meta_tx_request


logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("sedn.executor")

StatusListener = Callable[[TransactionPlan, PlanStatus], Awaitable[None]]

# Token contracts do not trust the forwarder, so these always go direct
DIRECT_ONLY_METHODS = frozenset({ContractMethod.INCREASE_ALLOWANCE, ContractMethod.TOKEN_TRANSFER})
CLAIM_METHODS = frozenset({ContractMethod.CLAIM, ContractMethod.BRIDGE_CLAIM})


@dataclass
class PlanResult:
    """Outcome of executing a plan."""
    plan: TransactionPlan
    status: PlanStatus
    errors: Dict[str, Exception] = field(default_factory=dict)
    execution_id: Optional[str] = None

    @property
    def tx_hashes(self) -> Dict[str, str]:
        return {d.descriptor_id: d.tx_hash for d in self.plan.descriptors if d.tx_hash}

    @property
    def costs_wei(self) -> Dict[str, int]:
        return {d.descriptor_id: d.receipt.cost_wei for d in self.plan.descriptors if d.receipt}

    @property
    def costs_usd(self) -> Dict[str, Decimal]:
        return {d.descriptor_id: d.cost_usd for d in self.plan.descriptors if d.cost_usd is not None}

    @property
    def is_success(self) -> bool:
        return self.status == PlanStatus.EXECUTED


class PlanExecutor:
    """
    Executes transaction plans for one signer at a time.

    Responsibilities:
    - Sign forward requests (gasless) or raw transactions (direct)
    - Serialize issuance per (signer, chain) through the NonceSequencer
    - Submit through the RelayClient and poll receipts
    - Track descriptor and plan status, notifying a listener on changes
    """

    def __init__(
        self,
        networks: NetworkRegistry,
        *,
        rpc_pool: Optional[RpcPool] = None,
        relay_client: Optional[RelayClient] = None,
        sequencer: Optional[NonceSequencer] = None,
        gasless: Optional[bool] = None,
        receipt_timeout_ms: Optional[int] = None,
        receipt_poll_interval_s: Optional[float] = None,
        request_validity_seconds: int = 1000,
        meta_tx_gas: Optional[int] = None,
        status_listener: Optional[StatusListener] = None,
        price_provider: Optional[CoingeckoProvider] = None,
        transient_retries: Optional[int] = None,
        retry_backoff_s: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Clock = monotonic_ms,
    ):
        self.networks = networks
        self.rpc_pool = rpc_pool or RpcPool(networks, timeout_s=settings.request_timeout_seconds)
        self.relay_client = relay_client or RelayClient()
        self.sequencer = sequencer or NonceSequencer()
        self.gasless = settings.gasless if gasless is None else gasless
        self.receipt_timeout_ms = receipt_timeout_ms or settings.receipt_timeout_ms
        self.receipt_poll_interval_s = receipt_poll_interval_s or settings.receipt_poll_interval_s
        self.request_validity_seconds = request_validity_seconds
        self.meta_tx_gas = meta_tx_gas or settings.meta_tx_gas
        self.status_listener = status_listener
        if price_provider is None and settings.report_tx_costs:
            price_provider = CoingeckoProvider()
        self.price_provider = price_provider
        self.transient_retries = settings.http_retry_count if transient_retries is None else transient_retries
        self.retry_backoff_s = retry_backoff_s
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Local execution
    # ------------------------------------------------------------------

    async def execute(self, plan: TransactionPlan, signer: Signer) -> PlanResult:
        """Execute every descriptor of ``plan`` and return the final status."""
        result = PlanResult(plan=plan, status=PlanStatus.PENDING)
        bind_execution_context(plan_id=plan.plan_id)
        _slog.info("plan_started", plan_id=plan.plan_id, kind=plan.kind.value, descriptors=len(plan.descriptors))

        chains = plan.by_chain()
        await asyncio.gather(*(
            self._run_chain(chain_id, descriptors, signer, result)
            for chain_id, descriptors in chains.items()
        ))

        result.status = plan.status
        _slog.info(
            "plan_finished",
            plan_id=plan.plan_id,
            status=result.status.value,
            tx_hashes=list(result.tx_hashes.values()),
        )
        await self._notify(plan, result.status)
        return result

    async def _run_chain(
        self,
        chain_id: int,
        descriptors: List[TransactionDescriptor],
        signer: Signer,
        result: PlanResult,
    ) -> None:
        for index, descriptor in enumerate(descriptors):
            blocked = self._failed_dependency(descriptor, result.plan)
            if blocked:
                self._fail(descriptor, UnrecoverableError(f"Dependency {blocked} did not confirm", chain_id=chain_id), result)
                await self._notify(result.plan, PlanStatus.FAILED)
                return

            remaining = len(descriptors) - index - 1
            for attempt in range(self.transient_retries + 1):
                try:
                    await self._attempt(descriptor, signer)
                    break
                except PollTimeoutError as exc:
                    descriptor.status = DescriptorStatus.TIMEOUT
                    descriptor.error = str(exc)
                    result.errors[descriptor.descriptor_id] = exc
                    _slog.warning(
                        "descriptor_timeout",
                        descriptor_id=descriptor.descriptor_id,
                        chain_id=chain_id,
                        tx_hash=descriptor.tx_hash,
                        remaining=remaining,
                    )
                    # the next nonce would collide with the pending request
                    return
                except RecoverableError as exc:
                    if attempt < self.transient_retries and await self._safe_to_retry(descriptor, signer):
                        delay = self.retry_backoff_s * (2 ** attempt)
                        logger.warning(
                            "Transient error on %s (attempt %d/%d), retrying in %.1fs: %s",
                            descriptor.descriptor_id,
                            attempt + 1,
                            self.transient_retries + 1,
                            delay,
                            exc,
                        )
                        await self._sleep(delay)
                        continue
                    self._halt(descriptor, exc, result, remaining)
                    return
                except SednError as exc:
                    error = classify_claim_failure(exc) if descriptor.method in CLAIM_METHODS else exc
                    self._fail(descriptor, error, result)
                    await self._notify(result.plan, PlanStatus.FAILED)
                    return

    async def _attempt(self, descriptor: TransactionDescriptor, signer: Signer) -> None:
        """Run one descriptor, turning stray exceptions into classified errors."""
        try:
            await self.execute_descriptor(descriptor, signer)
        except SednError:
            raise
        except Exception as exc:
            context = classify_error(exc)
            error_type = RecoverableError if context.recoverable else UnrecoverableError
            raise error_type(
                f"{type(exc).__name__}: {exc}",
                chain_id=descriptor.chain_id,
                tx_hash=descriptor.tx_hash,
                descriptor_id=descriptor.descriptor_id,
                details={"category": context.category.value},
            ) from exc

    async def _safe_to_retry(self, descriptor: TransactionDescriptor, signer: Signer) -> bool:
        """Whether re-running the descriptor cannot land a second transaction."""
        if descriptor.tx_hash:
            return False
        if descriptor.status != DescriptorStatus.SIGNED:
            return True
        if descriptor.signed_request is None:
            # a signed direct tx may already be in the mempool
            return False
        rpc = self.rpc_pool.for_chain(descriptor.chain_id)
        forwarder = ForwarderContract(rpc, self.networks.require(descriptor.chain_id).require_forwarder())
        try:
            return not await self._nonce_moved(forwarder, signer, descriptor.signed_request)
        except RecoverableError as exc:
            logger.warning("Cannot read forwarder nonce for %s: %s", descriptor.descriptor_id, exc)
            return False

    async def execute_descriptor(self, descriptor: TransactionDescriptor, signer: Signer) -> TransactionDescriptor:
        """Sign, submit and confirm one descriptor.

        Raises:
            PollTimeoutError: No receipt before the deadline.
            TransactionRevertedError: The call reverted (or the relayed inner call failed).
            ForwarderRejectedError: The forwarder rejected the request after a re-sign.
            ConfigurationError: The chain is missing an address or webhook.
        """
        network = self.networks.require(descriptor.chain_id)
        rpc = self.rpc_pool.for_chain(descriptor.chain_id)
        gasless = self.gasless and descriptor.method not in DIRECT_ONLY_METHODS

        if descriptor.from_address.lower() != signer.address.lower():
            raise ConfigurationError(
                f"Descriptor is from {descriptor.from_address} but signer is {signer.address}",
                chain_id=descriptor.chain_id,
                descriptor_id=descriptor.descriptor_id,
            )

        async with self.sequencer.slot(signer.address, descriptor.chain_id) as state:
            descriptor.attempts += 1
            if gasless:
                forwarder = ForwarderContract(rpc, network.require_forwarder())
                tx_hash = await self._submit_gasless(descriptor, signer, network, rpc, forwarder, state)
            else:
                tx_hash = await self.relay_client.submit_direct(descriptor, signer, network, rpc)

            descriptor.tx_hash = tx_hash
            descriptor.status = DescriptorStatus.SUBMITTED
            _slog.info(
                "descriptor_submitted",
                descriptor_id=descriptor.descriptor_id,
                chain_id=descriptor.chain_id,
                method=descriptor.method.value,
                tx_hash=tx_hash,
                gasless=gasless,
            )

            receipt = await poll_receipt(
                rpc,
                tx_hash,
                self.receipt_timeout_ms,
                interval_s=self.receipt_poll_interval_s,
                sleep=self._sleep,
                clock=self._clock,
            )
            descriptor.receipt = receipt

        failed = relayed_call_failed(receipt) if gasless else not receipt.succeeded
        if failed:
            raise TransactionRevertedError(
                "Transaction executed, but reverted",
                chain_id=descriptor.chain_id,
                tx_hash=tx_hash,
                descriptor_id=descriptor.descriptor_id,
            )

        descriptor.status = DescriptorStatus.CONFIRMED
        descriptor.cost_usd = await self._cost_usd(descriptor, network)
        _slog.info(
            "descriptor_confirmed",
            descriptor_id=descriptor.descriptor_id,
            chain_id=descriptor.chain_id,
            block=receipt.block_number,
            gas_used=receipt.gas_used,
            cost_wei=receipt.cost_wei,
            cost_usd=str(descriptor.cost_usd) if descriptor.cost_usd is not None else None,
        )
        return descriptor

    async def _cost_usd(self, descriptor: TransactionDescriptor, network: NetworkConfig) -> Optional[Decimal]:
        if self.price_provider is None or descriptor.receipt is None:
            return None
        try:
            return await self.price_provider.tx_cost_usd(descriptor.receipt.cost_wei, network.native_asset_id)
        except RecoverableError as exc:
            # the transfer is confirmed either way
            logger.warning("No USD price for %s on %s: %s", descriptor.descriptor_id, network.name, exc)
            return None

    async def _submit_gasless(
        self,
        descriptor: TransactionDescriptor,
        signer: Signer,
        network: NetworkConfig,
        rpc: RpcClient,
        forwarder: ForwarderContract,
        state: IssuanceState,
    ) -> str:
        for attempt in range(2):
            request = await self._sign(descriptor, signer, network, rpc, forwarder)
            self.sequencer.record(state, request.nonce)
            try:
                return await self.relay_client.submit_gasless(request, network, forwarder)
            except ForwarderRejectedError as exc:
                self.sequencer.release(state, request.nonce)
                if attempt == 0 and (is_stale_nonce(exc) or await self._nonce_moved(forwarder, signer, request)):
                    logger.warning(
                        "Forwarder nonce moved past %s for %s on %s; re-signing",
                        request.nonce,
                        signer.address,
                        network.name,
                    )
                    continue
                exc.context.descriptor_id = descriptor.descriptor_id
                exc.context.chain_id = descriptor.chain_id
                raise
            except SednError:
                self.sequencer.release(state, request.nonce)
                raise
        raise ForwarderRejectedError("Forwarder rejected the re-signed request", chain_id=descriptor.chain_id)

    async def _sign(
        self,
        descriptor: TransactionDescriptor,
        signer: Signer,
        network: NetworkConfig,
        rpc: RpcClient,
        forwarder: ForwarderContract,
        nonce_offset: int = 0,
    ) -> SignedRequest:
        valid_until = await rpc.latest_timestamp() + self.request_validity_seconds
        request = await build_meta_tx_request(
            forwarder,
            signer,
            to=descriptor.to_address,
            chain_id=network.chain_id,
            data=encode_method(descriptor.method, descriptor.args),
            schema=network.forwarder_schema,
            value=descriptor.value,
            valid_until=valid_until,
            gas=self.meta_tx_gas,
            nonce_offset=nonce_offset,
        )
        descriptor.signed_request = request
        descriptor.status = DescriptorStatus.SIGNED
        return request

    async def _nonce_moved(self, forwarder: ForwarderContract, signer: Signer, request: SignedRequest) -> bool:
        current = await forwarder.get_nonce(signer.address)
        return current != request.nonce

    # ------------------------------------------------------------------
    # Hand-off to the execution API
    # ------------------------------------------------------------------

    async def hand_off(
        self,
        plan: TransactionPlan,
        signer: Signer,
        api,
        *,
        recipient_id_or_address: str,
        max_wait_ms: Optional[int] = None,
        poll_interval_s: Optional[float] = None,
    ) -> PlanResult:
        """Sign the plan and let the execution API relay it.

        Direct-only descriptors (allowance increases) are executed locally
        first since the API only relays forward requests. Gasless
        descriptors on one chain are signed against consecutive nonces.
        """
        result = PlanResult(plan=plan, status=PlanStatus.PENDING)

        for chain_id, descriptors in plan.by_chain().items():
            network = self.networks.require(chain_id)
            rpc = self.rpc_pool.for_chain(chain_id)
            forwarder = ForwarderContract(rpc, network.require_forwarder())
            offset = 0
            for descriptor in descriptors:
                if descriptor.method in DIRECT_ONLY_METHODS:
                    try:
                        await self._attempt(descriptor, signer)
                    except SednError as exc:
                        self._fail(descriptor, exc, result)
                        result.status = PlanStatus.FAILED
                        await self._notify(plan, result.status)
                        return result
                    continue
                await self._sign(descriptor, signer, network, rpc, forwarder, nonce_offset=offset)
                offset += 1

        pending = [d for d in plan.descriptors if d.status == DescriptorStatus.SIGNED]
        execution_id = await api.execute_transactions(
            [d.to_dict() for d in pending],
            transaction_type=plan.kind.value,
            recipient_id_or_address=recipient_id_or_address,
        )
        result.execution_id = execution_id
        bind_execution_context(execution_id=execution_id)
        for descriptor in pending:
            descriptor.status = DescriptorStatus.SUBMITTED

        execution = await poll_execution_status(
            api,
            execution_id,
            max_wait_ms or settings.execution_timeout_ms,
            interval_s=poll_interval_s or settings.execution_poll_interval_s,
            sleep=self._sleep,
            clock=self._clock,
        )
        final = DescriptorStatus.CONFIRMED if execution.get("status") == "executed" else DescriptorStatus.FAILED
        hashes = [t.get("txHash") or t.get("hash") for t in execution.get("transactions") or []]
        for index, descriptor in enumerate(pending):
            descriptor.status = final
            if index < len(hashes) and hashes[index]:
                descriptor.tx_hash = hashes[index]

        result.status = plan.status
        _slog.info("execution_finished", execution_id=execution_id, status=result.status.value)
        await self._notify(plan, result.status)
        return result

    # ------------------------------------------------------------------

    def _failed_dependency(self, descriptor: TransactionDescriptor, plan: TransactionPlan) -> Optional[str]:
        for dependency_id in descriptor.depends_on:
            if plan.get(dependency_id).status != DescriptorStatus.CONFIRMED:
                return dependency_id
        return None

    def _fail(self, descriptor: TransactionDescriptor, error: Exception, result: PlanResult) -> None:
        descriptor.status = DescriptorStatus.FAILED
        descriptor.error = str(error)
        result.errors[descriptor.descriptor_id] = error
        _slog.error(
            "descriptor_failed",
            descriptor_id=descriptor.descriptor_id,
            chain_id=descriptor.chain_id,
            method=descriptor.method.value,
            error=str(error),
            error_type=type(error).__name__,
            category=classify_error(error).category.value,
        )

    def _halt(self, descriptor: TransactionDescriptor, error: Exception, result: PlanResult, remaining: int) -> None:
        # not a failure: the descriptor may still land, so the plan stays pending
        descriptor.error = str(error)
        result.errors[descriptor.descriptor_id] = error
        _slog.warning(
            "descriptor_halted",
            descriptor_id=descriptor.descriptor_id,
            chain_id=descriptor.chain_id,
            status=descriptor.status.value,
            tx_hash=descriptor.tx_hash,
            error=str(error),
            error_type=type(error).__name__,
            remaining=remaining,
        )

    async def _notify(self, plan: TransactionPlan, status: PlanStatus) -> None:
        if self.status_listener is not None:
            await self.status_listener(plan, status)
