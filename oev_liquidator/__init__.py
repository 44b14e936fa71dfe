"""
OEV Liquidator
==============

Liquidation bot for the Compound III USDC market on Base that wins the right
to liquidate through API3 OEV auctions.
"""

__version__ = "0.1.0"
