"""Tests for liquidation candidate discovery and profit estimation."""

from unittest.mock import AsyncMock

import pytest

from oev_liquidator.config import MAX_UINT256
from oev_liquidator.core.discovery import (
    calculate_expected_profit,
    find_liquidatable_positions,
    liquidation_params,
)
from oev_liquidator.models import PositionDetails

from conftest import accounts_details, address


def candidate(position, collateral=1000):
    return PositionDetails(
        position=position,
        borrow_usd=95,
        max_borrow_usd=100,
        collateral_usd=collateral,
        is_liquidatable=True,
        loan_to_value=95.0,
    )


class TestLiquidationParams:
    def test_params(self):
        assert liquidation_params(["a", "b"]) == (["a", "b"], [MAX_UINT256] * 3, 0)


class TestFindLiquidatablePositions:
    """Tests for find_liquidatable_positions."""

    @pytest.mark.asyncio
    async def test_sorted_by_collateral_descending(self, store, target_chain):
        positions = [address(i) for i in range(1, 6)]
        store.set_fields(interesting_positions=positions)
        target_chain.get_accounts_details = AsyncMock(return_value=accounts_details([
            (95, 100, 100, True),
            (70, 100, 5000, False),
            (95, 100, 300, True),
            (95, 100, 300, True),
            (95, 100, 200, True),
        ]))

        result = await find_liquidatable_positions(store.get(), ["0xsim"])

        # Equal collateral keeps input order
        assert [d.position for d in result] == [positions[2], positions[3], positions[4], positions[0]]
        target_chain.get_accounts_details.assert_awaited_once_with(positions, ["0xsim"])

    @pytest.mark.asyncio
    async def test_no_liquidatable_positions(self, store, target_chain):
        store.set_fields(interesting_positions=[address(1)])
        target_chain.get_accounts_details = AsyncMock(return_value=accounts_details([(70, 100, 5000, False)]))

        assert await find_liquidatable_positions(store.get(), []) == []

    @pytest.mark.asyncio
    async def test_no_interesting_positions(self, state, target_chain):
        assert await find_liquidatable_positions(state, []) == []
        target_chain.get_accounts_details.assert_not_awaited()


class TestCalculateExpectedProfit:
    """Tests for calculate_expected_profit."""

    @pytest.mark.asyncio
    async def test_profit(self, state, target_chain):
        target_chain.simulate_liquidation_profit = AsyncMock(return_value=123)

        profit = await calculate_expected_profit(state, ["0xsim"], [candidate("a"), candidate("b")])

        assert profit == 123
        target_chain.simulate_liquidation_profit.assert_awaited_once_with(
            ["0xsim"], (["a", "b"], [MAX_UINT256] * 3, 0)
        )

    @pytest.mark.asyncio
    async def test_simulation_failure(self, state, target_chain):
        target_chain.simulate_liquidation_profit = AsyncMock(side_effect=ValueError("execution reverted"))

        assert await calculate_expected_profit(state, [], [candidate("a")]) is None
