"""
Core Logic
==========

- state.py: process-wide copy-on-write state
- positions.py: position sets, log discovery and classification
- feeds.py: dAPI resolution, OEV feed derivation and signed data
- discovery.py: liquidatable positions and expected profit
- auction.py: bidding windows, bids, awards and fulfillment reports
- executor.py: bid-protected liquidation transactions
"""

from .state import ProcessState, StateNotInitializedError, StateStore

__all__ = ["ProcessState", "StateNotInitializedError", "StateStore"]
