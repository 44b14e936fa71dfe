"""
OEV Liquidation Bot
===================

Main service: keeps the position sets fresh and runs OEV liquidations.

Loops:
- initialize-target-chain: bootstrap positions, retried until it succeeds
- fetch-and-filter-new-positions: scan recent logs and classify new positions
- reset-interesting-positions: re-filter the current set
- reset-current-positions: re-filter the whole set
- initiate-oev-liquidations: find candidates, bid, and liquidate when awarded

Only one liquidation is in flight at a time. The positions being liquidated
are recorded in the process state as soon as candidates are found, and
cleared as soon as the attempt completes or fails.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import List, Optional, Sequence, Set

from ..api import OevNetworkClient, SignedApiClient, TargetChainClient
from ..config import BID_PROFIT_PERCENTAGE, COMPOUND3_DAPIS, LIQUIDATION_HARD_TIMEOUT_SEC, config
from ..core.auction import place_bid, poll_awarded_bid, report_fulfillment
from ..core.discovery import calculate_expected_profit, find_liquidatable_positions
from ..core.executor import liquidate_positions
from ..core.feeds import (
    get_oev_data_feeds,
    get_oev_feed_values,
    prepare_api3_feeds,
    prepare_oev_updates,
    resolve_data_feeds,
)
from ..core.positions import fetch_new_positions, filter_positions, merge_positions, position_difference
from ..core.state import ProcessState, StateStore
from ..db import load_all_positions, load_positions_to_watch
from ..models import Bid, LiquidationAttempt, LiquidationStage, PositionDetails, TERMINAL_STAGES
from ..utils import get_percentage_value
from .loops import create_loop_options, run_in_loop

logger = logging.getLogger(__name__)


class LiquidationBot:
    """
    OEV liquidation bot for the Compound III USDC market on Base.

    All state lives in `store`; the bot itself only tracks the running
    liquidation task and the last attempt for inspection.
    """

    def __init__(
        self,
        target_chain=None,
        oev_network=None,
        signed_api=None,
        store: StateStore = None,
    ):
        self.target_chain = target_chain
        self.oev_network = oev_network
        self.signed_api = signed_api
        self.store = store or StateStore()

        self.liquidation_task: Optional[asyncio.Task] = None
        self.liquidation_tasks: Set[asyncio.Task] = set()
        self.last_attempt: Optional[LiquidationAttempt] = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_config(cls) -> "LiquidationBot":
        """Create a bot with clients built from the global config."""
        return cls(
            target_chain=TargetChainClient(),
            oev_network=OevNetworkClient(),
            signed_api=SignedApiClient(),
        )

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize_state(self) -> ProcessState:
        """Publish the initial state, seeded from the all-positions snapshot."""
        all_positions, last_block = load_all_positions()
        return self.store.initialize(ProcessState(
            target_chain=self.target_chain,
            oev_network=self.oev_network,
            signed_api=self.signed_api,
            api3_feeds=prepare_api3_feeds(COMPOUND3_DAPIS),
            all_positions=all_positions,
            target_chain_last_block=last_block,
        ))

    async def initialize_positions(self) -> dict:
        """Scan for positions since the seed and classify them."""
        logger.info("Initializing positions")
        started = time.monotonic()

        state = self.store.get()
        current_block = await state.target_chain.get_block_number()
        new_positions = await fetch_new_positions(state, current_block)
        all_positions = merge_positions(state.all_positions, new_positions)

        # The positions file is a development override and has precedence
        filtered = load_positions_to_watch()
        if filtered is None:
            filtered = await filter_positions(state, all_positions)

        self.store.update(lambda s: replace(
            s,
            all_positions=all_positions,
            current_positions=filtered.current_positions,
            interesting_positions=filtered.interesting_positions,
            target_chain_last_block=current_block,
        ))

        logger.info(
            f"Watching {len(all_positions)} positions: {len(filtered.current_positions)} current, "
            f"{len(filtered.interesting_positions)} interesting ({time.monotonic() - started:.1f}s)"
        )
        return {"should_continue_running": False}

    async def initialize(self):
        if not self.store.initialized:
            self.initialize_state()

        await run_in_loop(
            self.initialize_positions,
            create_loop_options(
                "initialize-target-chain",
                config.initialize_target_chain_timeout_sec,
                config.run_in_loop_max_wait_time_percentage,
                initial_delay_sec=0,
            ),
            self._stop_event,
        )

    # -------------------------------------------------------------------------
    # Position Loops
    # -------------------------------------------------------------------------

    async def on_fetch_and_filter_new_positions(self):
        state = self.store.get()

        current_block = await state.target_chain.get_block_number()
        new_positions = await fetch_new_positions(state, current_block)
        filtered = await filter_positions(state, new_positions)

        new_state = self.store.update(lambda s: replace(
            s,
            all_positions=merge_positions(s.all_positions, new_positions),
            current_positions=merge_positions(s.current_positions, filtered.current_positions),
            interesting_positions=merge_positions(s.interesting_positions, filtered.interesting_positions),
            target_chain_last_block=current_block,
        ))

        added, _ = position_difference(state.all_positions, new_state.all_positions)
        added_current, _ = position_difference(state.current_positions, new_state.current_positions)
        added_interesting, _ = position_difference(state.interesting_positions, new_state.interesting_positions)
        logger.info(
            f"New positions after logs refetch: {len(added)} added, {len(added_current)} current, "
            f"{len(added_interesting)} interesting"
        )

    async def on_reset_interesting_positions(self):
        state = self.store.get()
        filtered = await filter_positions(state, state.current_positions)

        previous = self.store.get().interesting_positions
        self.store.set_fields(interesting_positions=filtered.interesting_positions)

        added, discarded = position_difference(previous, filtered.interesting_positions)
        logger.info(
            f"Interesting positions after reset: {len(filtered.interesting_positions)} "
            f"(added {added}, discarded {discarded})"
        )

    async def on_reset_current_positions(self):
        state = self.store.get()
        filtered = await filter_positions(state, state.all_positions)

        previous = self.store.get()
        self.store.set_fields(
            current_positions=filtered.current_positions,
            interesting_positions=filtered.interesting_positions,
        )

        added_current, discarded_current = position_difference(
            previous.current_positions, filtered.current_positions
        )
        added_interesting, discarded_interesting = position_difference(
            previous.interesting_positions, filtered.interesting_positions
        )
        logger.info(
            f"Positions after reset: {len(filtered.current_positions)} current "
            f"(added {len(added_current)}, discarded {len(discarded_current)}), "
            f"{len(filtered.interesting_positions)} interesting "
            f"(added {len(added_interesting)}, discarded {len(discarded_interesting)})"
        )
        if added_current:
            # A small position crossed the minimum size due to price movements
            logger.warning(f"Found missing current position(s): {added_current}")

    # -------------------------------------------------------------------------
    # Liquidations
    # -------------------------------------------------------------------------

    def _acquire_guard(self, positions: Sequence[str]) -> bool:
        acquired = False

        def acquire(state: ProcessState) -> ProcessState:
            nonlocal acquired
            if state.currently_liquidated_positions:
                return state
            acquired = True
            return replace(state, currently_liquidated_positions=tuple(positions))

        self.store.update(acquire)
        return acquired

    def _release_guard(self):
        self.store.set_fields(currently_liquidated_positions=())

    async def on_initiate_oev_liquidations(self):
        """
        Look for liquidations enabled by the next OEV update and bid for them.

        The post-bid phase (award polling, execution, reporting) runs in
        `self.liquidation_task` so this loop iteration returns right away. Every
        such task stays in `self.liquidation_tasks` until it finishes, including
        a fulfillment report still running after the next attempt started.
        """
        state = self.store.get()
        if state.currently_liquidated_positions:
            logger.info(
                f"Skipping liquidation as another liquidation is in progress: "
                f"{list(state.currently_liquidated_positions)}"
            )
            return

        data_feeds = await resolve_data_feeds(self.store)
        if not data_feeds:
            logger.warning("No data feeds resolved, skipping liquidation check")
            return

        oev_data_feeds = get_oev_data_feeds(self.store, data_feeds)
        oev_feed_values = await get_oev_feed_values(state.signed_api, oev_data_feeds)
        signed_data_array, simulate_calls = prepare_oev_updates(state, data_feeds, oev_feed_values)

        liquidatable = await find_liquidatable_positions(self.store.get(), simulate_calls)
        candidates = liquidatable[:config.max_positions_to_liquidate]
        if not candidates:
            logger.info("No liquidations found.")
            return

        positions = [candidate.position for candidate in candidates]
        if not self._acquire_guard(positions):
            logger.info("Skipping liquidation as another liquidation started meanwhile")
            return

        attempt = LiquidationAttempt(positions=positions)
        attempt.advance(LiquidationStage.CANDIDATES_FOUND)
        self.last_attempt = attempt

        try:
            bid = await self._bid(attempt, candidates, simulate_calls)
        except Exception:
            attempt.fail("unexpected error while bidding")
            self._release_guard()
            raise

        if bid is None:
            self._release_guard()
            return

        self.liquidation_task = asyncio.ensure_future(
            self.complete_liquidation(attempt, candidates, bid, signed_data_array)
        )
        self.liquidation_tasks.add(self.liquidation_task)
        self.liquidation_task.add_done_callback(self.liquidation_tasks.discard)

    async def _bid(
        self,
        attempt: LiquidationAttempt,
        candidates: List[PositionDetails],
        simulate_calls: Sequence[str],
    ) -> Optional[Bid]:
        state = self.store.get()

        expected_profit = await calculate_expected_profit(state, simulate_calls, candidates)
        if expected_profit is None:
            attempt.fail("profit simulation failed")
            return None

        bid_amount = get_percentage_value(expected_profit, BID_PROFIT_PERCENTAGE)
        bid = await place_bid(state, bid_amount)
        if bid is None:
            attempt.fail("bid not placed")
            return None

        attempt.bid = bid
        attempt.advance(LiquidationStage.BID_PLACED)
        return bid

    async def complete_liquidation(
        self,
        attempt: LiquidationAttempt,
        candidates: List[PositionDetails],
        bid: Bid,
        signed_data_array: List[List[bytes]],
    ) -> LiquidationAttempt:
        """
        Wait for the award, liquidate and report fulfillment.

        The guard is cleared once the attempt completes or fails, before the
        fulfillment report is sent.
        """
        try:
            await asyncio.wait_for(
                self._award_and_execute(attempt, candidates, bid, signed_data_array),
                timeout=LIQUIDATION_HARD_TIMEOUT_SEC,
            )
        except asyncio.TimeoutError:
            logger.error(f"Liquidation exceeded hard timeout of {LIQUIDATION_HARD_TIMEOUT_SEC}s")
            if attempt.stage not in TERMINAL_STAGES:
                attempt.fail("hard timeout")
        except Exception as e:
            logger.exception(f"Unexpected liquidation error: {e}")
            if attempt.stage not in TERMINAL_STAGES:
                attempt.fail(f"unexpected error: {e}")
        finally:
            self._release_guard()

        if attempt.stage == LiquidationStage.COMPLETED:
            if await report_fulfillment(self.store.get(), bid, attempt.result.tx_hash):
                attempt.advance(LiquidationStage.REPORTED)
        else:
            logger.info(f"Liquidation attempt failed: {attempt.failure_reason}")

        return attempt

    async def _award_and_execute(
        self,
        attempt: LiquidationAttempt,
        candidates: List[PositionDetails],
        bid: Bid,
        signed_data_array: List[List[bytes]],
    ):
        attempt.advance(LiquidationStage.AWAITING_AWARD)
        award = await poll_awarded_bid(self.store.get(), bid)
        if award is None:
            attempt.fail("no award")
            return
        if award.bid_id != bid.bid_id:
            logger.error(f"Unexpected bid won the auction: {award.bid_id} (ours {bid.bid_id})")
            attempt.fail("outbid")
            return

        attempt.award = award
        attempt.advance(LiquidationStage.AWARDED)

        logger.info(f"Attempting liquidation(s) of {attempt.positions}")
        attempt.advance(LiquidationStage.EXECUTING)
        result = await liquidate_positions(
            self.store.get(), candidates, bid, award.award_details, signed_data_array
        )
        attempt.result = result

        if result is None:
            attempt.fail("liquidation not sent")
        elif result.status is None:
            attempt.fail("liquidation receipt timed out")
        elif not result.succeeded:
            attempt.fail("liquidation reverted")
        else:
            attempt.advance(LiquidationStage.COMPLETED)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self):
        """Initialize, then run all loops until `stop` is called."""
        await self.initialize()

        loops = [
            (self.on_fetch_and_filter_new_positions, "fetch-and-filter-new-positions",
             config.fetch_and_filter_new_positions_frequency_sec),
            (self.on_reset_interesting_positions, "reset-interesting-positions",
             config.reset_interesting_positions_frequency_sec),
            (self.on_reset_current_positions, "reset-current-positions",
             config.reset_current_positions_frequency_sec),
            (self.on_initiate_oev_liquidations, "initiate-oev-liquidations",
             config.initiate_oev_liquidations_frequency_sec),
        ]

        logger.info("Starting loops")
        await asyncio.gather(*(
            run_in_loop(
                fn,
                create_loop_options(label, frequency, config.run_in_loop_max_wait_time_percentage),
                self._stop_event,
            )
            for fn, label, frequency in loops
        ))

    def stop(self):
        """Ask all loops to finish after their current iteration."""
        logger.info("Shutdown requested, stopping loops...")
        self._stop_event.set()

    async def close(self):
        """Wait for in-flight liquidations and release HTTP resources."""
        pending = [task for task in self.liquidation_tasks if not task.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight liquidation task(s) to finish")
            await asyncio.wait(pending)
        if self.signed_api is not None:
            await self.signed_api.close()
