"""
Monitor Package
===============

Long-running service that schedules the bot's loops.

Components:
- loops.py: run_in_loop scheduling with jitter and hard timeouts
- bot.py: LiquidationBot, the loop callbacks and the liquidation task
"""

from .bot import LiquidationBot
from .loops import LoopOptions, create_loop_options, run_in_loop

__all__ = ["LiquidationBot", "LoopOptions", "create_loop_options", "run_in_loop"]
