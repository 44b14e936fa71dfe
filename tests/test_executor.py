"""Tests for liquidation execution and absorption reconciliation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from oev_liquidator.config import MAX_UINT256
from oev_liquidator.core.executor import liquidate_positions, reconcile_absorbed
from oev_liquidator.models import Bid, PositionDetails

from conftest import address

TX_HASH = "0x" + "ab" * 32


def candidate(position):
    return PositionDetails(
        position=position,
        borrow_usd=95,
        max_borrow_usd=100,
        collateral_usd=1000,
        is_liquidatable=True,
        loan_to_value=95.0,
    )


@pytest.fixture
def bid():
    return Bid(
        bid_id="0x" + "01" * 32,
        bid_topic="0x" + "02" * 32,
        bid_details="0x",
        bid_details_hash="0x" + "03" * 32,
        amount=10 ** 17,
        nonce="0x" + "04" * 32,
        signed_data_timestamp_cutoff=1_700_000_025,
    )


class TestReconcileAbsorbed:
    """Tests for reconcile_absorbed."""

    def test_partial_absorption(self):
        positions = [address(1), address(2), address(3)]

        liquidated, failed = reconcile_absorbed(positions, [address(3), address(1)])

        assert liquidated == [address(1), address(3)]
        assert failed == [address(2)]

    def test_duplicate_events_collapse(self):
        positions = [address(1), address(2)]

        liquidated, failed = reconcile_absorbed(positions, [address(1), address(1), address(1)])

        assert liquidated == [address(1)]
        assert failed == [address(2)]

    def test_case_insensitive(self):
        liquidated, failed = reconcile_absorbed([address(0xABC)], [address(0xABC).lower()])
        assert liquidated == [address(0xABC)]
        assert failed == []

    def test_partition(self):
        positions = [address(i) for i in range(10)]
        liquidated, failed = reconcile_absorbed(positions, positions[::3])
        assert sorted(liquidated + failed) == sorted(positions)
        assert not set(liquidated) & set(failed)


class TestLiquidatePositions:
    """Tests for liquidate_positions."""

    @pytest.mark.asyncio
    async def test_successful_liquidation(self, state, target_chain, bid):
        positions = [address(1), address(2)]
        function = MagicMock()
        target_chain.pay_bid_and_liquidate = MagicMock(return_value=function)
        target_chain.get_absorbed_borrowers = MagicMock(return_value=[address(2), address(1)])

        result = await liquidate_positions(
            state, [candidate(p) for p in positions], bid, b"\x01", [[b"data"]], dapp_id=7
        )

        target_chain.pay_bid_and_liquidate.assert_called_once_with(
            7, bid.amount, bid.signed_data_timestamp_cutoff, b"\x01", [[b"data"]],
            (positions, [MAX_UINT256] * 3, 0),
        )
        target_chain.estimate_gas.assert_awaited_once_with(function, value=bid.amount)
        target_chain.send_transaction.assert_awaited_once_with(function, 1_000_000, value=bid.amount)

        assert result.succeeded
        assert result.tx_hash == TX_HASH
        assert result.liquidated_positions == positions
        assert result.failed_positions == []
        assert result.gas_data["estimated_gas_limit"] == 500_000
        assert result.gas_data["actual_gas_limit"] == 1_000_000
        assert result.gas_data["gas_used"] == 400_000
        assert result.gas_data["gas_used_to_estimate_pct"] == 80
        assert result.gas_data["gas_used_to_limit_pct"] == 40

    @pytest.mark.asyncio
    async def test_partial_liquidation(self, state, target_chain, bid):
        positions = [address(1), address(2), address(3)]
        target_chain.get_absorbed_borrowers = MagicMock(return_value=[address(2)])

        result = await liquidate_positions(state, [candidate(p) for p in positions], bid, b"", [])

        assert result.succeeded
        assert result.liquidated_positions == [address(2)]
        assert result.failed_positions == [address(1), address(3)]

    @pytest.mark.asyncio
    async def test_reverted_liquidation(self, state, target_chain, bid):
        target_chain.wait_for_receipt = AsyncMock(return_value={"status": 0, "gasUsed": 100_000, "logs": []})

        result = await liquidate_positions(state, [candidate(address(1))], bid, b"", [])

        assert result.status == 0
        assert not result.succeeded
        assert result.failed_positions == [address(1)]
        assert result.gas_data["gas_used"] == 100_000
        target_chain.get_absorbed_borrowers.assert_not_called()

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, state, target_chain, bid):
        target_chain.wait_for_receipt = AsyncMock(return_value=None)

        result = await liquidate_positions(state, [candidate(address(1))], bid, b"", [])

        assert result.status is None
        assert not result.succeeded
        assert result.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_estimate_failure(self, state, target_chain, bid):
        target_chain.estimate_gas = AsyncMock(side_effect=ValueError("execution reverted"))

        assert await liquidate_positions(state, [candidate(address(1))], bid, b"", []) is None
        target_chain.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure(self, state, target_chain, bid):
        target_chain.send_transaction = AsyncMock(side_effect=ConnectionError("rpc down"))

        assert await liquidate_positions(state, [candidate(address(1))], bid, b"", []) is None
