"""
Liquidation Candidate Discovery
===============================

Finds interesting positions that become liquidatable once the pending OEV
price update is applied, and estimates the profit of liquidating them.
"""

import logging
from typing import List, Optional, Sequence

from ..config import MAX_UINT256, POSITIONS_CLOSE_TO_LIQUIDATION_LOG_SIZE
from ..models import PositionDetails
from .positions import get_positions_details
from .state import ProcessState

logger = logging.getLogger(__name__)

# Comet sells at most three collateral assets per liquidation call
MAX_AMOUNTS_TO_PURCHASE = [MAX_UINT256, MAX_UINT256, MAX_UINT256]


def liquidation_params(positions: Sequence[str]) -> tuple:
    """Liquidator `LiquidateParams` for the given positions."""
    return (list(positions), list(MAX_AMOUNTS_TO_PURCHASE), 0)


async def find_liquidatable_positions(
    state: ProcessState,
    simulate_calls: Sequence[str],
) -> List[PositionDetails]:
    """
    Read the interesting positions as if the OEV update had landed.

    Logs the non-liquidatable positions closest to liquidation.

    Returns:
        Liquidatable positions, largest collateral first (ties keep input order)
    """
    details = await get_positions_details(state, state.interesting_positions, simulate_calls)

    close_to_liquidation = sorted(
        (d for d in details if not d.is_liquidatable),
        key=lambda d: d.loan_to_value,
    )[:POSITIONS_CLOSE_TO_LIQUIDATION_LOG_SIZE]
    if close_to_liquidation:
        summary = ", ".join(f"{d.position} ({d.loan_to_value:.2f}%)" for d in close_to_liquidation)
        logger.info(f"Positions close to liquidation: {summary}")

    liquidatable = sorted(
        (d for d in details if d.is_liquidatable),
        key=lambda d: d.collateral_usd,
        reverse=True,
    )
    if liquidatable:
        summary = ", ".join(f"{d.position} (collateral {d.collateral_usd})" for d in liquidatable)
        logger.info(f"Found {len(liquidatable)} liquidatable position(s): {summary}")

    return liquidatable


async def calculate_expected_profit(
    state: ProcessState,
    simulate_calls: Sequence[str],
    candidates: Sequence[PositionDetails],
) -> Optional[int]:
    """
    Simulate liquidating `candidates` after the OEV update.

    Returns:
        Expected profit in wei, or None if the simulation failed
    """
    params = liquidation_params([candidate.position for candidate in candidates])
    try:
        profit = await state.target_chain.simulate_liquidation_profit(simulate_calls, params)
    except Exception as e:
        logger.error(f"Failed to simulate liquidation profit: {e}")
        return None

    logger.info(f"Expected liquidation profit: {profit} wei")
    return profit
