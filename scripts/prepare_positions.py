#!/usr/bin/env python3
"""
Prepare position snapshots for the bot.

Scans Comet Withdraw logs, classifies the positions and writes:
    - data/all-positions.json: all positions and the last scanned block
    - data/positions-to-watch.json: current and interesting positions

Usage:
    python3 scripts/prepare_positions.py prepare  # Continue from the existing snapshot
    python3 scripts/prepare_positions.py reset    # Rescan from block 0
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from oev_liquidator.api import TargetChainClient
from oev_liquidator.config import config
from oev_liquidator.core.positions import fetch_positions, filter_positions, merge_positions
from oev_liquidator.core.state import ProcessState
from oev_liquidator.db import load_all_positions, write_json

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


async def prepare_positions_to_watch(reset: bool):
    target_chain = TargetChainClient()
    state = ProcessState(target_chain=target_chain, oev_network=None, signed_api=None)

    cached_positions, last_block = ([], 0) if reset else load_all_positions()
    end_block = await target_chain.get_block_number()

    positions = await fetch_positions(
        last_block - config.borrower_logs_lookback_blocks,
        end_block,
        config.max_log_range_blocks,
        config.min_rpc_delay_sec,
        target_chain.get_borrowers,
    )
    all_positions = merge_positions(cached_positions, positions)
    logger.info(f"Fetched {len(all_positions)} unique positions up to block {end_block}")

    filtered = await filter_positions(state, all_positions)
    logger.info(
        f"Filtered positions: {len(filtered.current_positions)} current, "
        f"{len(filtered.interesting_positions)} interesting"
    )

    write_json(config.all_positions_path, {"allPositions": all_positions, "lastBlock": end_block})
    write_json(config.positions_to_watch_path, {
        "currentPositions": filtered.current_positions,
        "interestingPositions": filtered.interesting_positions,
    })
    logger.info(f"Wrote {config.all_positions_path} and {config.positions_to_watch_path}")


def main():
    parser = argparse.ArgumentParser(description="Prepare position snapshots")
    parser.add_argument(
        'command',
        choices=['prepare', 'reset'],
        help='prepare: continue from the existing snapshot, reset: rescan from block 0',
    )
    args = parser.parse_args()

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    asyncio.run(prepare_positions_to_watch(reset=args.command == 'reset'))


if __name__ == "__main__":
    main()
