"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .auction import (
    AuctionWindow,
    AwardedBid,
    Bid,
    LiquidationAttempt,
    LiquidationResult,
    LiquidationStage,
    TERMINAL_STAGES,
)
from .feeds import Api3Feed, Beacon, DataFeed, DataFeedWithSignedData, SignedData
from .position import FilteredPositions, PositionDetails

__all__ = [
    "AuctionWindow",
    "AwardedBid",
    "Bid",
    "LiquidationAttempt",
    "LiquidationResult",
    "LiquidationStage",
    "TERMINAL_STAGES",
    "Api3Feed",
    "Beacon",
    "DataFeed",
    "DataFeedWithSignedData",
    "SignedData",
    "FilteredPositions",
    "PositionDetails",
]
