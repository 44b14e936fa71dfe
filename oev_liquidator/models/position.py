"""
Position Models
===============

Borrower positions are plain checksummed addresses. These dataclasses carry
the account health read back from the liquidator contract.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class PositionDetails:
    """
    Account health of a single borrower (a liquidation candidate).

    USD values use the liquidator contract's 8-decimal scale.
    """
    position: str
    borrow_usd: int
    max_borrow_usd: int
    collateral_usd: int
    is_liquidatable: bool
    loan_to_value: float  # Percentage, 0 when max_borrow_usd is 0


@dataclass
class FilteredPositions:
    """Result of a classification pass over a set of positions."""
    current_positions: List[str] = field(default_factory=list)
    interesting_positions: List[str] = field(default_factory=list)
