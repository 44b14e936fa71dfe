"""
Position Tracking
=================

Maintains the three position sets watched by the bot:

- all: every account seen borrowing from the market
- current: significant positions (enough collateral and a non-zero borrow)
- interesting: current positions with loan-to-value >= 80%

Sets are lists without duplicates, ordered by first appearance. They only
grow through `merge_positions`; members are dropped only when a set is
replaced by re-filtering a superset.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from ..config import INTERESTING_LOAN_TO_VALUE_PCT, PERCENTAGE_VALUE_MANTISSA, config
from ..models import FilteredPositions, PositionDetails
from ..utils import chunk
from .state import ProcessState

logger = logging.getLogger(__name__)

FetchChunk = Callable[[int, int], Awaitable[List[str]]]


# =============================================================================
# Set Operations
# =============================================================================

def merge_positions(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Deduplicated union preserving first-seen order."""
    return list(dict.fromkeys([*existing, *incoming]))


def position_difference(existing: Sequence[str], new: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Compare two position sets.

    Returns:
        (added, discarded): positions only in `new`, positions only in `existing`
    """
    existing_set = set(existing)
    new_set = set(new)
    added = [position for position in new if position not in existing_set]
    discarded = [position for position in existing if position not in new_set]
    return added, discarded


# =============================================================================
# Discovery
# =============================================================================

async def fetch_positions(
    start_block: int,
    end_block: int,
    max_range: int,
    delay_sec: float,
    fetch_chunk: FetchChunk,
) -> List[str]:
    """
    Collect positions from logs in [start_block, end_block].

    The range is split into sub-ranges of at most `max_range` blocks, fetched
    one after another with `delay_sec` between calls. A failing sub-range
    fails the whole call.

    Args:
        start_block: First block (clamped at 0)
        end_block: Last block (inclusive)
        max_range: Maximum blocks per log query
        delay_sec: Delay after each query
        fetch_chunk: Async callable returning positions for (from_block, to_block)

    Returns:
        Deduplicated positions in discovery order
    """
    if max_range <= 0:
        raise ValueError("max_range must be positive")

    positions: List[str] = []
    chunk_start = max(start_block, 0)

    while chunk_start <= end_block:
        chunk_end = min(chunk_start + max_range - 1, end_block)
        logger.info(f"Fetching positions in blocks {chunk_start}-{chunk_end}")

        chunk_positions = await fetch_chunk(chunk_start, chunk_end)
        positions = merge_positions(positions, chunk_positions)

        chunk_start = chunk_end + 1
        await asyncio.sleep(delay_sec)

    return positions


async def fetch_new_positions(state: ProcessState, current_block: int) -> List[str]:
    """Positions active since the last scanned block (minus a small lookback)."""
    return await fetch_positions(
        state.target_chain_last_block - config.borrower_logs_lookback_blocks,
        current_block,
        config.max_log_range_blocks,
        config.min_rpc_delay_sec,
        state.target_chain.get_borrowers,
    )


# =============================================================================
# Classification
# =============================================================================

def compute_loan_to_value(borrow_usd: int, max_borrow_usd: int) -> float:
    """
    Loan-to-value ratio in percent.

    Integer division at PERCENTAGE_VALUE_MANTISSA precision keeps large USD
    values exact before converting to float. Defined as 0 without borrow capacity.
    """
    if max_borrow_usd == 0:
        return 0.0
    ratio = borrow_usd * PERCENTAGE_VALUE_MANTISSA // max_borrow_usd
    return ratio * 100 / PERCENTAGE_VALUE_MANTISSA


def is_position_significant(details: PositionDetails, min_collateral_usd: int) -> bool:
    """Enough collateral to be worth liquidating, and something borrowed."""
    return details.collateral_usd >= min_collateral_usd and details.borrow_usd > 0


def is_position_interesting(details: PositionDetails, min_collateral_usd: int) -> bool:
    return (
        is_position_significant(details, min_collateral_usd)
        and details.loan_to_value >= INTERESTING_LOAN_TO_VALUE_PCT
    )


async def get_positions_details(
    state: ProcessState,
    positions: Sequence[str],
    simulate_calls: Sequence[str] = (),
    batch_size: Optional[int] = None,
    delay_sec: Optional[float] = None,
) -> List[PositionDetails]:
    """
    Read account health for positions in batches.

    Each batch is a single (optionally simulated) call. A failing batch is
    logged and skipped, the other batches still contribute.

    Args:
        state: Current process state
        positions: Positions to read
        simulate_calls: Hypothetical updates applied before each read
        batch_size: Positions per call (default MAX_BORROWER_DETAILS_MULTICALL)
        delay_sec: Delay after each call (default MIN_RPC_DELAY_SEC)

    Returns:
        Details in input order, minus positions of failed batches
    """
    batch_size = batch_size or config.max_borrower_details_multicall
    delay_sec = delay_sec if delay_sec is not None else config.min_rpc_delay_sec

    batches = list(chunk(list(positions), batch_size))
    details: List[PositionDetails] = []

    for index, batch in enumerate(batches):
        logger.debug(f"Fetching account details for batch {index + 1}/{len(batches)} ({len(batch)} positions)")
        try:
            borrows, max_borrows, collaterals, liquidatable = await state.target_chain.get_accounts_details(
                batch, simulate_calls
            )
        except Exception as e:
            logger.error(f"Error getting account details for batch {index + 1}/{len(batches)}: {e}")
            continue

        lengths = {len(borrows), len(max_borrows), len(collaterals), len(liquidatable)}
        if lengths != {len(batch)}:
            logger.error(
                f"Account details for batch {index + 1}/{len(batches)} do not match its "
                f"{len(batch)} positions (got lengths {sorted(lengths)})"
            )
            continue

        for i, position in enumerate(batch):
            details.append(PositionDetails(
                position=position,
                borrow_usd=borrows[i],
                max_borrow_usd=max_borrows[i],
                collateral_usd=collaterals[i],
                is_liquidatable=bool(liquidatable[i]),
                loan_to_value=compute_loan_to_value(borrows[i], max_borrows[i]),
            ))

        await asyncio.sleep(delay_sec)

    return details


async def filter_positions(
    state: ProcessState,
    positions: Sequence[str],
    min_collateral_usd: Optional[int] = None,
) -> FilteredPositions:
    """
    Classify positions into current and interesting sets.

    Returns:
        FilteredPositions preserving input order
    """
    min_collateral_usd = min_collateral_usd if min_collateral_usd is not None else config.min_collateral_usd
    logger.info(f"Filtering {len(positions)} positions")

    details = await get_positions_details(state, positions)
    return FilteredPositions(
        current_positions=[d.position for d in details if is_position_significant(d, min_collateral_usd)],
        interesting_positions=[d.position for d in details if is_position_interesting(d, min_collateral_usd)],
    )
