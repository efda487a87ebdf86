"""
Confirmation polling.

Each poller is a suspend-on-await loop with an explicit deadline: read,
return on success, sleep, repeat. No background timers are left behind
when a poll returns or raises.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import PollTimeoutError, RecoverableError
from .models import Receipt
from .rpc import RpcClient

logger = logging.getLogger(__name__)

RECEIPT_POLL_INTERVAL_S = 5.0
BALANCE_POLL_INTERVAL_S = 10.0
EXECUTION_POLL_INTERVAL_S = 10.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class BalanceComparator(str, Enum):
    INCREASED = "increased"   # strictly greater than the baseline
    CHANGED = "changed"       # any difference from the baseline

    def matches(self, baseline: int, current: int) -> bool:
        if self is BalanceComparator.INCREASED:
            return current > baseline
        return current != baseline


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


async def _poll(
    read: Callable[[], Awaitable[Any]],
    done: Callable[[Any], bool],
    *,
    what: str,
    max_wait_ms: int,
    interval_s: float,
    clock: Clock,
    sleep: Sleep,
) -> Any:
    started = clock()
    while True:
        try:
            value = await read()
        except RecoverableError as exc:
            # Transient read failures count against the deadline only
            logger.warning("Polling %s: transient error %s", what, exc)
        else:
            if done(value):
                return value

        elapsed = clock() - started
        if elapsed > max_wait_ms:
            raise PollTimeoutError(
                f"Timed out waiting for {what}. Max time: {max_wait_ms}ms",
                waited_ms=int(elapsed),
            )
        logger.info("Waiting for %s. Elapsed time: %dms.", what, int(elapsed))
        await sleep(interval_s)


async def poll_receipt(
    rpc: RpcClient,
    tx_hash: str,
    max_wait_ms: int = 60_000,
    *,
    interval_s: float = RECEIPT_POLL_INTERVAL_S,
    clock: Clock = monotonic_ms,
    sleep: Sleep = asyncio.sleep,
) -> Receipt:
    """Return the first non-null receipt for ``tx_hash``.

    A receipt with ``status == 0`` is returned as-is; the caller decides
    whether that is a revert.

    Raises:
        PollTimeoutError: No receipt before the deadline.
    """
    data = await _poll(
        lambda: rpc.get_transaction_receipt(tx_hash),
        lambda value: bool(value),
        what=f"tx receipt {tx_hash}",
        max_wait_ms=max_wait_ms,
        interval_s=interval_s,
        clock=clock,
        sleep=sleep,
    )
    return Receipt.from_rpc(data)


async def poll_balance_change(
    read_balance: Callable[[], Awaitable[int]],
    baseline: int,
    max_wait_ms: int = 60_000,
    *,
    comparator: BalanceComparator = BalanceComparator.INCREASED,
    interval_s: float = BALANCE_POLL_INTERVAL_S,
    clock: Clock = monotonic_ms,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Wait until the balance moves from ``baseline``; return the signed delta."""
    current = await _poll(
        read_balance,
        lambda value: comparator.matches(baseline, value),
        what="balance change",
        max_wait_ms=max_wait_ms,
        interval_s=interval_s,
        clock=clock,
        sleep=sleep,
    )
    return current - baseline


async def poll_execution_status(
    api,
    execution_id: str,
    max_wait_ms: int = 600_000,
    *,
    interval_s: float = EXECUTION_POLL_INTERVAL_S,
    clock: Clock = monotonic_ms,
    sleep: Sleep = asyncio.sleep,
) -> Dict[str, Any]:
    """Wait until the execution API reports ``executed`` or ``failed``."""
    return await _poll(
        lambda: api.execution_status(execution_id),
        lambda execution: (execution or {}).get("status") in ("executed", "failed"),
        what=f"execution {execution_id}",
        max_wait_ms=max_wait_ms,
        interval_s=interval_s,
        clock=clock,
        sleep=sleep,
    )


def relayed_call_failed(receipt: Receipt, emitter: Optional[str] = None) -> bool:
    """True when a relayed tx succeeded at the forwarder but the inner call did not.

    The forwarder does not bubble inner reverts, so a successful receipt
    without any log from the target contract means the call failed.
    """
    if not receipt.succeeded:
        return True
    if not receipt.logs:
        return True
    if emitter is None:
        return False
    target = emitter.lower()
    return not any(str(log.get("address", "")).lower() == target for log in receipt.logs)
