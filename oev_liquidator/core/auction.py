"""
OEV Auction Coordination
========================

Bidding for the right to use OEV price updates on the OEV network.

Auctions run back to back in fixed-length slots. The slot boundaries of a
dApp are shifted by an offset derived from its dApp ID, and only the first
part of each slot (the bidding phase) accepts bids. A bid commits to a signed
data timestamp cutoff; the winner may update feeds with data signed up to
that cutoff.
"""

import asyncio
import logging
import secrets
import time
from typing import Optional

from eth_abi import encode
from web3 import Web3

from ..config import (
    OEV_AUCTION_LENGTH_SECONDS,
    OEV_AWARD_BLOCK_RANGE,
    OEV_AWARD_POLL_RETRIES,
    OEV_BIDDING_PHASE_BUFFER_SECONDS,
    OEV_BIDDING_PHASE_LENGTH_SECONDS,
    OEV_PROTOCOL_VERSION,
    config,
)
from ..models import AuctionWindow, AwardedBid, Bid
from .state import ProcessState

logger = logging.getLogger(__name__)


# =============================================================================
# Auction Timing
# =============================================================================

def auction_offset(dapp_id: int) -> int:
    """Seconds by which the dApp's auction slots are shifted."""
    digest = Web3.solidity_keccak(["uint256"], [dapp_id])
    return int.from_bytes(digest, "big") % OEV_AUCTION_LENGTH_SECONDS


def determine_bidding_window(now: int, dapp_id: int = None) -> AuctionWindow:
    """
    Find the auction to bid in at `now` (unix seconds).

    If less than OEV_BIDDING_PHASE_BUFFER_SECONDS of the current bidding
    phase remain, the next auction is targeted instead.
    """
    dapp_id = dapp_id if dapp_id is not None else config.dapp_id
    offset = auction_offset(dapp_id)

    auction_start = now - ((now + offset) % OEV_AUCTION_LENGTH_SECONDS)
    bidding_phase_end = auction_start + OEV_BIDDING_PHASE_LENGTH_SECONDS
    if bidding_phase_end - now < OEV_BIDDING_PHASE_BUFFER_SECONDS:
        auction_start += OEV_AUCTION_LENGTH_SECONDS
        bidding_phase_end += OEV_AUCTION_LENGTH_SECONDS

    return AuctionWindow(
        auction_start_timestamp=auction_start,
        bidding_phase_end_timestamp=bidding_phase_end,
        signed_data_timestamp_cutoff=bidding_phase_end,
    )


# =============================================================================
# Bid Encoding
# =============================================================================

def derive_bid_topic(dapp_id: int, signed_data_timestamp_cutoff: int) -> str:
    return Web3.to_hex(Web3.solidity_keccak(
        ["uint256", "uint256", "uint32", "uint256"],
        [OEV_PROTOCOL_VERSION, dapp_id, OEV_AUCTION_LENGTH_SECONDS, signed_data_timestamp_cutoff],
    ))


def encode_bid_details(liquidator_address: str, nonce: str) -> str:
    """abi.encode(liquidator, nonce): the award is bound to our liquidator contract."""
    return Web3.to_hex(encode(
        ["address", "bytes32"],
        [Web3.to_checksum_address(liquidator_address), Web3.to_bytes(hexstr=nonce)],
    ))


def derive_bid_id(bidder: str, bid_topic: str, bid_details_hash: str) -> str:
    return Web3.to_hex(Web3.solidity_keccak(
        ["address", "bytes32", "bytes32"],
        [Web3.to_checksum_address(bidder), Web3.to_bytes(hexstr=bid_topic), Web3.to_bytes(hexstr=bid_details_hash)],
    ))


def generate_nonce() -> str:
    return Web3.to_hex(secrets.token_bytes(32))


# =============================================================================
# Auction House Interaction
# =============================================================================

async def place_bid(
    state: ProcessState,
    amount: int,
    now: Optional[int] = None,
    dapp_id: Optional[int] = None,
) -> Optional[Bid]:
    """
    Bid `amount` (wei) in the current auction and wait for the bid to be mined.

    The bid never costs more than `amount`: both the collateral and the
    protocol fee are capped at it. It expires one auction length after the
    signed data cutoff.

    Returns:
        The placed Bid, or None if the amount is zero or the transaction
        failed, reverted or timed out
    """
    if amount <= 0:
        logger.warning(f"Not bidding non-positive amount {amount}")
        return None

    dapp_id = dapp_id if dapp_id is not None else config.dapp_id
    window = determine_bidding_window(now if now is not None else int(time.time()), dapp_id)
    cutoff = window.signed_data_timestamp_cutoff

    bid_topic = derive_bid_topic(dapp_id, cutoff)
    nonce = generate_nonce()
    bid_details = encode_bid_details(state.target_chain.liquidator.address, nonce)
    bid_details_hash = Web3.to_hex(Web3.keccak(hexstr=bid_details))
    bid_id = derive_bid_id(state.oev_network.address, bid_topic, bid_details_hash)

    logger.info(f"Placing bid {bid_id} of {amount} wei (cutoff {cutoff})")
    try:
        chain_id = await state.target_chain.get_chain_id()
        tx_hash = await state.oev_network.place_bid_with_expiration(
            bid_topic,
            chain_id,
            amount,
            bid_details,
            amount,
            amount,
            cutoff + OEV_AUCTION_LENGTH_SECONDS,
        )
        receipt = await state.oev_network.wait_for_receipt(tx_hash, config.bid_transaction_timeout_sec)
    except Exception as e:
        logger.error(f"Failed to place bid: {e}")
        return None

    if receipt is None:
        logger.error(f"Bid transaction {tx_hash} was not confirmed in time")
        return None
    if receipt["status"] == 0:
        logger.error(f"Bid transaction {tx_hash} reverted")
        return None

    logger.info(f"Placed bid {bid_id} in tx {tx_hash}")
    return Bid(
        bid_id=bid_id,
        bid_topic=bid_topic,
        bid_details=bid_details,
        bid_details_hash=bid_details_hash,
        amount=amount,
        nonce=nonce,
        signed_data_timestamp_cutoff=cutoff,
        tx_hash=tx_hash,
    )


async def poll_awarded_bid(
    state: ProcessState,
    bid: Bid,
    retries: int = OEV_AWARD_POLL_RETRIES,
    delay_sec: Optional[float] = None,
) -> Optional[AwardedBid]:
    """
    Poll for the award of the auction `bid` was placed in.

    Makes one attempt plus up to `retries` retries, `delay_sec` apart. The
    returned award may belong to another bidder; callers compare bid IDs.

    Returns:
        The first AwardedBid for the bid topic, or None if none appeared
    """
    delay_sec = delay_sec if delay_sec is not None else config.oev_poll_award_bid_delay_sec

    for attempt in range(retries + 1):
        if attempt > 0:
            await asyncio.sleep(delay_sec)
        try:
            awards = await state.oev_network.get_awarded_bids(bid.bid_topic, OEV_AWARD_BLOCK_RANGE)
        except Exception as e:
            logger.warning(f"Award poll attempt {attempt + 1} failed: {e}")
            continue
        if awards:
            return awards[0]
        logger.debug(f"No award yet for topic {bid.bid_topic} (attempt {attempt + 1})")

    logger.error(f"No award found for bid {bid.bid_id} after {retries + 1} attempts")
    return None


async def report_fulfillment(state: ProcessState, bid: Bid, liquidation_tx_hash: str) -> bool:
    """
    Report the liquidation transaction that fulfilled an awarded bid.

    Failures are logged only; they never undo the liquidation.

    Returns:
        True if the report was confirmed
    """
    try:
        tx_hash = await state.oev_network.report_fulfillment(
            bid.bid_topic, bid.bid_details_hash, liquidation_tx_hash
        )
        receipt = await state.oev_network.wait_for_receipt(tx_hash, config.bid_transaction_timeout_sec)
    except Exception as e:
        logger.error(f"Failed to report fulfillment of bid {bid.bid_id}: {e}")
        return False

    if receipt is None or receipt["status"] == 0:
        logger.error(f"Fulfillment report {tx_hash} for bid {bid.bid_id} did not succeed")
        return False

    logger.info(f"Reported fulfillment of bid {bid.bid_id} in tx {tx_hash}")
    return True
