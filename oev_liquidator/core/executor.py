"""
Liquidation Executor
====================

Submits the bid-protected liquidation on the target chain after winning an
OEV auction, and reconciles which positions were actually absorbed.
"""

import logging
from typing import List, Optional, Sequence

from ..config import GAS_LIMIT_MULTIPLIER_PCT, config
from ..models import Bid, LiquidationResult, PositionDetails
from ..utils import get_percentage_value
from .discovery import liquidation_params
from .state import ProcessState

logger = logging.getLogger(__name__)


def reconcile_absorbed(positions: Sequence[str], absorbed: Sequence[str]):
    """
    Split submitted positions by whether Comet absorbed them.

    Any AbsorbCollateral event for a borrower counts, so several events for
    one position collapse into one. Both lists keep submission order.

    Returns:
        (liquidated, failed)
    """
    absorbed_set = {borrower.lower() for borrower in absorbed}
    liquidated = [position for position in positions if position.lower() in absorbed_set]
    failed = [position for position in positions if position.lower() not in absorbed_set]
    return liquidated, failed


async def liquidate_positions(
    state: ProcessState,
    candidates: Sequence[PositionDetails],
    bid: Bid,
    award_details: bytes,
    signed_data_array: Sequence[Sequence[bytes]],
    dapp_id: Optional[int] = None,
) -> Optional[LiquidationResult]:
    """
    Pay the awarded bid and liquidate `candidates` in one transaction.

    The OEV update uses the same signed data the bid was based on. The gas
    limit is the node estimate times GAS_LIMIT_MULTIPLIER_PCT.

    Returns:
        LiquidationResult (status None if no receipt arrived in time), or
        None if the transaction could not be prepared or sent
    """
    dapp_id = dapp_id if dapp_id is not None else config.dapp_id
    target_chain = state.target_chain
    positions: List[str] = [candidate.position for candidate in candidates]

    function = target_chain.pay_bid_and_liquidate(
        dapp_id,
        bid.amount,
        bid.signed_data_timestamp_cutoff,
        award_details,
        signed_data_array,
        liquidation_params(positions),
    )

    try:
        estimated_gas_limit = await target_chain.estimate_gas(function, value=bid.amount)
    except Exception as e:
        logger.error(f"Unexpected error while preparing the liquidation: {e}")
        return None

    gas_limit = get_percentage_value(estimated_gas_limit, GAS_LIMIT_MULTIPLIER_PCT)
    logger.info(f"Gas limits: estimated {estimated_gas_limit}, using {gas_limit}")

    try:
        tx_hash = await target_chain.send_transaction(function, gas_limit, value=bid.amount)
    except Exception as e:
        logger.error(f"Failed to send liquidation transaction: {e}")
        return None

    logger.info(f"Sent liquidation transaction {tx_hash} for {len(positions)} position(s)")
    receipt = await target_chain.wait_for_receipt(tx_hash, config.liquidation_transaction_timeout_sec)
    if receipt is None:
        logger.error(f"Waiting for liquidation receipt {tx_hash} timed out")
        return LiquidationResult(tx_hash=tx_hash, status=None, failed_positions=positions)

    gas_used = receipt["gasUsed"]
    gas_data = {
        "gas_used": gas_used,
        "estimated_gas_limit": estimated_gas_limit,
        "actual_gas_limit": gas_limit,
        "gas_used_to_estimate_pct": gas_used * 100 / estimated_gas_limit if estimated_gas_limit else 0.0,
        "gas_used_to_limit_pct": gas_used * 100 / gas_limit if gas_limit else 0.0,
    }

    if receipt["status"] == 0:
        logger.error(f"Liquidation {tx_hash} reverted (gas {gas_data})")
        return LiquidationResult(tx_hash=tx_hash, status=0, failed_positions=positions, gas_data=gas_data)

    liquidated, failed = reconcile_absorbed(positions, target_chain.get_absorbed_borrowers(receipt))
    result = LiquidationResult(
        tx_hash=tx_hash,
        status=receipt["status"],
        liquidated_positions=liquidated,
        failed_positions=failed,
        gas_data=gas_data,
    )

    if not liquidated:
        logger.error(f"No liquidation was successful in {tx_hash}: {failed}")
    elif failed:
        logger.warning(f"Some liquidations in {tx_hash} were not successful: liquidated {liquidated}, failed {failed}")
    else:
        logger.info(f"Liquidation {tx_hash} successful: {liquidated}")

    return result
