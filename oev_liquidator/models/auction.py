"""
Auction Models
==============

OEV auction windows, bids, awards and the liquidation attempt they drive.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class AuctionWindow:
    """Timing of the auction we bid in (unix seconds)."""
    auction_start_timestamp: int
    bidding_phase_end_timestamp: int
    signed_data_timestamp_cutoff: int


@dataclass(frozen=True)
class Bid:
    """A bid placed on the OEV network for a single auction."""
    bid_id: str
    bid_topic: str
    bid_details: str
    bid_details_hash: str
    amount: int
    nonce: str
    signed_data_timestamp_cutoff: int
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class AwardedBid:
    """An AwardedBid event emitted by the auction house."""
    bidder: str
    bid_topic: str
    bid_id: str
    award_details: bytes
    block_number: int


class LiquidationStage(Enum):
    """Lifecycle of a single liquidation attempt."""
    IDLE = "idle"
    CANDIDATES_FOUND = "candidates_found"
    BID_PLACED = "bid_placed"
    AWAITING_AWARD = "awaiting_award"
    AWARDED = "awarded"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    REPORTED = "reported"


TERMINAL_STAGES = {LiquidationStage.COMPLETED, LiquidationStage.FAILED, LiquidationStage.REPORTED}


@dataclass
class LiquidationResult:
    """Outcome of a submitted liquidation transaction."""
    tx_hash: str
    status: Optional[int]  # Receipt status: 1 success, 0 reverted, None without receipt
    liquidated_positions: List[str] = field(default_factory=list)
    failed_positions: List[str] = field(default_factory=list)
    gas_data: Dict[str, float] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass
class LiquidationAttempt:
    """
    In-memory record of one pass through the liquidation pipeline.

    Only used for logging and inspection, never persisted.
    """
    positions: List[str] = field(default_factory=list)
    stage: LiquidationStage = LiquidationStage.IDLE
    bid: Optional[Bid] = None
    award: Optional[AwardedBid] = None
    result: Optional[LiquidationResult] = None
    failure_reason: Optional[str] = None
    history: List[LiquidationStage] = field(default_factory=lambda: [LiquidationStage.IDLE])

    def advance(self, stage: LiquidationStage):
        """
        Move to the next stage.

        Terminal stages are final, except that a COMPLETED attempt may be
        REPORTED once its fulfillment is on the OEV network.
        """
        if stage == LiquidationStage.REPORTED:
            allowed = self.stage == LiquidationStage.COMPLETED
        else:
            allowed = self.stage not in TERMINAL_STAGES
        if not allowed:
            raise ValueError(f"Cannot move from {self.stage.value} to {stage.value}")
        self.stage = stage
        self.history.append(stage)

    def fail(self, reason: str):
        """Move to FAILED, recording why."""
        self.failure_reason = reason
        self.advance(LiquidationStage.FAILED)
