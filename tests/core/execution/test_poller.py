"""
Tests for the confirmation pollers.
"""

import pytest
from unittest.mock import AsyncMock

from conftest import FakeClock
from sedn.core.errors import PollTimeoutError, RpcError
from sedn.core.execution.models import Receipt
from sedn.core.execution.poller import (
    BalanceComparator,
    poll_balance_change,
    poll_execution_status,
    poll_receipt,
    relayed_call_failed,
)

SEDN = "0x579e9809c0e06711a815698ebcd38b210621760a"


RECEIPT = {"transactionHash": "0xabc", "status": "0x1", "blockNumber": "0x2a", "gasUsed": "0x10", "logs": []}


class TestPollReceipt:
    @pytest.mark.asyncio
    async def test_returns_first_receipt(self):
        clock = FakeClock()
        rpc = AsyncMock()
        rpc.get_transaction_receipt = AsyncMock(side_effect=[None, None, RECEIPT])

        receipt = await poll_receipt(rpc, "0xabc", 60_000, clock=clock, sleep=clock.sleep)

        assert receipt.tx_hash == "0xabc"
        assert receipt.block_number == 42
        assert clock.sleeps == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_times_out(self):
        clock = FakeClock()
        rpc = AsyncMock()
        rpc.get_transaction_receipt = AsyncMock(return_value=None)

        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_receipt(rpc, "0xabc", 12_000, clock=clock, sleep=clock.sleep)

        assert exc_info.value.waited_ms > 12_000
        assert "Max time: 12000ms" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_each_call_has_its_own_deadline(self):
        clock = FakeClock()
        rpc = AsyncMock()
        rpc.get_transaction_receipt = AsyncMock(return_value=None)

        for _ in range(2):
            with pytest.raises(PollTimeoutError):
                await poll_receipt(rpc, "0xabc", 10_000, interval_s=1, clock=clock, sleep=clock.sleep)

        # 12 reads before each deadline passes
        assert rpc.get_transaction_receipt.await_count == 24

    @pytest.mark.asyncio
    async def test_transient_errors_keep_polling(self):
        clock = FakeClock()
        rpc = AsyncMock()
        rpc.get_transaction_receipt = AsyncMock(side_effect=[RpcError("flaky"), RECEIPT])

        receipt = await poll_receipt(rpc, "0xabc", 60_000, clock=clock, sleep=clock.sleep)

        assert receipt.succeeded is True

    @pytest.mark.asyncio
    async def test_reverted_receipt_returned(self):
        clock = FakeClock()
        rpc = AsyncMock()
        rpc.get_transaction_receipt = AsyncMock(return_value={**RECEIPT, "status": "0x0"})

        receipt = await poll_receipt(rpc, "0xabc", clock=clock, sleep=clock.sleep)

        assert receipt.succeeded is False


class TestPollBalanceChange:
    @pytest.mark.asyncio
    async def test_positive_delta(self):
        clock = FakeClock()
        read = AsyncMock(side_effect=[100, 100, 250])

        delta = await poll_balance_change(read, 100, clock=clock, sleep=clock.sleep)

        assert delta == 150
        assert clock.sleeps == [10.0, 10.0]

    @pytest.mark.asyncio
    async def test_increase_ignores_decrease(self):
        clock = FakeClock()
        read = AsyncMock(side_effect=[80, 120])

        assert await poll_balance_change(read, 100, clock=clock, sleep=clock.sleep) == 20

    @pytest.mark.asyncio
    async def test_changed_reports_decrease(self):
        clock = FakeClock()
        read = AsyncMock(return_value=60)

        delta = await poll_balance_change(
            read, 100, comparator=BalanceComparator.CHANGED, clock=clock, sleep=clock.sleep
        )

        assert delta == -40

    @pytest.mark.asyncio
    async def test_times_out(self):
        clock = FakeClock()
        read = AsyncMock(return_value=100)

        with pytest.raises(PollTimeoutError):
            await poll_balance_change(read, 100, 30_000, clock=clock, sleep=clock.sleep)


class TestPollExecutionStatus:
    @pytest.mark.asyncio
    async def test_waits_for_terminal_status(self):
        clock = FakeClock()
        api = AsyncMock()
        api.execution_status = AsyncMock(side_effect=[
            {"status": "pending"},
            {"status": "executed", "transactions": []},
        ])

        execution = await poll_execution_status(api, "exec_1", clock=clock, sleep=clock.sleep)

        assert execution["status"] == "executed"
        api.execution_status.assert_awaited_with("exec_1")


class TestRelayedCallFailed:
    def test_status_zero(self):
        assert relayed_call_failed(Receipt(tx_hash="0x1", status=0, block_number=1))

    def test_no_logs(self):
        assert relayed_call_failed(Receipt(tx_hash="0x1", status=1, block_number=1))

    def test_logs_from_target(self):
        receipt = Receipt(tx_hash="0x1", status=1, block_number=1, logs=[{"address": SEDN.lower()}])
        assert not relayed_call_failed(receipt, SEDN)

    def test_logs_from_elsewhere_only(self):
        receipt = Receipt(tx_hash="0x1", status=1, block_number=1, logs=[{"address": "0x0000000000000000000000000000000000000001"}])
        assert relayed_call_failed(receipt, SEDN)
        assert not relayed_call_failed(receipt)


class TestReceiptCost:
    def test_gas_times_effective_price(self):
        receipt = Receipt.from_rpc({**RECEIPT, "gasUsed": "0x5208", "effectiveGasPrice": "0x3b9aca00"})
        assert receipt.cost_wei == 21_000 * 10**9

    def test_missing_effective_price(self):
        assert Receipt.from_rpc({**RECEIPT, "gasUsed": "0x5208"}).cost_wei == 21_000
