#!/usr/bin/env python3
"""
OEV Liquidation Bot - CLI Entry Point
=====================================

Runs the liquidation bot for the Compound III USDC market on Base.

Loops:
    - initialize-target-chain: bootstrap positions (retried until success)
    - fetch-and-filter-new-positions: scan recent Withdraw logs
    - reset-interesting-positions: re-filter current positions
    - reset-current-positions: re-filter all positions
    - initiate-oev-liquidations: bid in OEV auctions and liquidate

Usage:
    # Start the bot
    python scripts/run_bot.py

    # Verbose logging
    python scripts/run_bot.py --log-level DEBUG
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from oev_liquidator.config import config
from oev_liquidator.monitor import LiquidationBot


def setup_logging(log_level: str = config.log_level, log_file: str = config.log_file):
    """Configure logging for the bot."""
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create date-stamped log file (e.g., logs/bot_2026-01-18.log)
    date_str = datetime.now().strftime("%Y-%m-%d")
    dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped)
    file_handler = logging.FileHandler(dated_log_file)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP and RPC libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)

    root_logger.info(f"Logging to: {dated_log_file}")


async def run(bot: LiquidationBot):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, bot.stop)

    try:
        await bot.start()
    finally:
        await bot.close()


def main():
    parser = argparse.ArgumentParser(
        description='OEV Liquidation Bot',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_bot.py                    # Start the bot
  python scripts/run_bot.py --log-level DEBUG  # Verbose logging
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=config.log_level.upper(),
        help=f'Log level (default: {config.log_level})'
    )

    args = parser.parse_args()

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    print("\n" + "=" * 60)
    print("OEV LIQUIDATION BOT")
    print("=" * 60)
    print(f"Comet:          {config.comet_address}")
    print(f"Liquidator:     {config.liquidator_contract_address}")
    print(f"dApp ID:        {config.dapp_id}")
    print(f"Min position:   ${config.min_position_usd}")
    print(f"Log level:      {args.log_level}")
    print("=" * 60)
    print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(run(LiquidationBot.from_config()))
    except KeyboardInterrupt:
        print("\n\nBot stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Bot error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
