"""Tests for auction timing, bid encoding and auction house interaction."""

from unittest.mock import AsyncMock

import pytest
from eth_abi import decode
from web3 import Web3

from oev_liquidator.config import (
    OEV_AUCTION_LENGTH_SECONDS,
    OEV_AWARD_POLL_RETRIES,
    OEV_BIDDING_PHASE_BUFFER_SECONDS,
    OEV_BIDDING_PHASE_LENGTH_SECONDS,
)
from oev_liquidator.core.auction import (
    auction_offset,
    derive_bid_id,
    derive_bid_topic,
    determine_bidding_window,
    encode_bid_details,
    place_bid,
    poll_awarded_bid,
    report_fulfillment,
)
from oev_liquidator.models import AwardedBid, Bid, LiquidationAttempt, LiquidationStage

from conftest import BIDDER, LIQUIDATOR

NOW = 1_700_000_000


def make_bid(**overrides):
    values = dict(
        bid_id="0x" + "01" * 32,
        bid_topic="0x" + "02" * 32,
        bid_details="0x",
        bid_details_hash="0x" + "03" * 32,
        amount=10 ** 17,
        nonce="0x" + "04" * 32,
        signed_data_timestamp_cutoff=NOW,
    )
    values.update(overrides)
    return Bid(**values)


def award(bid_id, bidder=BIDDER):
    return AwardedBid(bidder=bidder, bid_topic="0x" + "02" * 32, bid_id=bid_id, award_details=b"\x01", block_number=5)


class TestBiddingWindow:
    """Tests for determine_bidding_window."""

    def test_offset_is_within_auction_length(self):
        for dapp_id in range(1, 50):
            assert 0 <= auction_offset(dapp_id) < OEV_AUCTION_LENGTH_SECONDS

    def test_window_is_aligned_to_offset(self):
        for dapp_id in (1, 2, 17):
            offset = auction_offset(dapp_id)
            for now in range(NOW, NOW + 90):
                window = determine_bidding_window(now, dapp_id)
                assert (window.auction_start_timestamp + offset) % OEV_AUCTION_LENGTH_SECONDS == 0
                assert window.bidding_phase_end_timestamp == (
                    window.auction_start_timestamp + OEV_BIDDING_PHASE_LENGTH_SECONDS
                )
                assert window.signed_data_timestamp_cutoff == window.bidding_phase_end_timestamp

    def test_window_leaves_bidding_buffer(self):
        for now in range(NOW, NOW + 90):
            window = determine_bidding_window(now, 1)
            assert window.bidding_phase_end_timestamp - now >= OEV_BIDDING_PHASE_BUFFER_SECONDS
            assert window.auction_start_timestamp <= now + OEV_AUCTION_LENGTH_SECONDS

    def test_window_is_idempotent(self):
        assert determine_bidding_window(NOW, 3) == determine_bidding_window(NOW, 3)

    def test_window_is_monotonic(self):
        previous = determine_bidding_window(NOW, 5)
        for now in range(NOW + 1, NOW + 120):
            window = determine_bidding_window(now, 5)
            assert window.auction_start_timestamp >= previous.auction_start_timestamp
            previous = window

    def test_skips_to_next_auction_near_phase_end(self):
        offset = auction_offset(1)
        start = NOW - ((NOW + offset) % OEV_AUCTION_LENGTH_SECONDS)
        late = start + OEV_BIDDING_PHASE_LENGTH_SECONDS - OEV_BIDDING_PHASE_BUFFER_SECONDS + 1

        window = determine_bidding_window(late, 1)

        assert window.auction_start_timestamp == start + OEV_AUCTION_LENGTH_SECONDS

    def test_uses_configured_dapp_id(self):
        assert determine_bidding_window(NOW) == determine_bidding_window(NOW, 1)


class TestBidEncoding:
    """Tests for bid topic, details and ID derivation."""

    def test_topic_is_deterministic(self):
        assert derive_bid_topic(1, NOW) == derive_bid_topic(1, NOW)
        assert derive_bid_topic(1, NOW) != derive_bid_topic(2, NOW)
        assert derive_bid_topic(1, NOW) != derive_bid_topic(1, NOW + 30)

    def test_bid_details_encode_liquidator_and_nonce(self):
        nonce = "0x" + "aa" * 32

        details = encode_bid_details(LIQUIDATOR, nonce)

        liquidator, decoded_nonce = decode(["address", "bytes32"], Web3.to_bytes(hexstr=details))
        assert Web3.to_checksum_address(liquidator) == LIQUIDATOR
        assert Web3.to_hex(decoded_nonce) == nonce

    def test_bid_id_depends_on_bidder(self):
        topic = derive_bid_topic(1, NOW)
        details_hash = "0x" + "03" * 32
        assert derive_bid_id(BIDDER, topic, details_hash) != derive_bid_id(LIQUIDATOR, topic, details_hash)


class TestPlaceBid:
    """Tests for place_bid."""

    @pytest.mark.asyncio
    async def test_zero_amount_is_not_bid(self, state, oev_network):
        assert await place_bid(state, 0, now=NOW) is None
        oev_network.place_bid_with_expiration.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_places_bid(self, state, oev_network):
        amount = 8 * 10 ** 17
        window = determine_bidding_window(NOW, 1)

        bid = await place_bid(state, amount, now=NOW)

        assert bid is not None
        assert bid.amount == amount
        assert bid.signed_data_timestamp_cutoff == window.signed_data_timestamp_cutoff
        assert bid.bid_topic == derive_bid_topic(1, window.signed_data_timestamp_cutoff)
        assert bid.bid_id == derive_bid_id(BIDDER, bid.bid_topic, bid.bid_details_hash)
        assert bid.bid_details == encode_bid_details(LIQUIDATOR, bid.nonce)
        assert bid.tx_hash == "0x" + "cd" * 32

        args = oev_network.place_bid_with_expiration.call_args.args
        assert args == (
            bid.bid_topic,
            8453,
            amount,
            bid.bid_details,
            amount,
            amount,
            window.signed_data_timestamp_cutoff + OEV_AUCTION_LENGTH_SECONDS,
        )

    @pytest.mark.asyncio
    async def test_nonces_differ_between_bids(self, state):
        first = await place_bid(state, 1, now=NOW)
        second = await place_bid(state, 1, now=NOW)
        assert first.nonce != second.nonce
        assert first.bid_id != second.bid_id

    @pytest.mark.asyncio
    async def test_unconfirmed_bid(self, state, oev_network):
        oev_network.wait_for_receipt = AsyncMock(return_value=None)
        assert await place_bid(state, 1, now=NOW) is None

    @pytest.mark.asyncio
    async def test_reverted_bid(self, state, oev_network):
        oev_network.wait_for_receipt = AsyncMock(return_value={"status": 0})
        assert await place_bid(state, 1, now=NOW) is None

    @pytest.mark.asyncio
    async def test_send_failure(self, state, oev_network):
        oev_network.place_bid_with_expiration = AsyncMock(side_effect=ValueError("insufficient funds"))
        assert await place_bid(state, 1, now=NOW) is None


class TestPollAwardedBid:
    """Tests for poll_awarded_bid."""

    @pytest.mark.asyncio
    async def test_returns_award_once_available(self, state, oev_network):
        bid = make_bid()
        expected = award(bid.bid_id)
        oev_network.get_awarded_bids = AsyncMock(side_effect=[[], ConnectionError("rpc"), [expected]])

        assert await poll_awarded_bid(state, bid) == expected
        assert oev_network.get_awarded_bids.await_count == 3

    @pytest.mark.asyncio
    async def test_returns_award_of_other_bidder(self, state, oev_network):
        other = award("0x" + "99" * 32)
        oev_network.get_awarded_bids = AsyncMock(return_value=[other])

        assert await poll_awarded_bid(state, make_bid()) == other

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, state, oev_network):
        assert await poll_awarded_bid(state, make_bid()) is None
        assert oev_network.get_awarded_bids.await_count == OEV_AWARD_POLL_RETRIES + 1


class TestReportFulfillment:
    """Tests for report_fulfillment."""

    @pytest.mark.asyncio
    async def test_reports(self, state, oev_network):
        bid = make_bid()

        assert await report_fulfillment(state, bid, "0x" + "ab" * 32) is True
        oev_network.report_fulfillment.assert_awaited_once_with(
            bid.bid_topic, bid.bid_details_hash, "0x" + "ab" * 32
        )

    @pytest.mark.asyncio
    async def test_failure_returns_false(self, state, oev_network):
        oev_network.report_fulfillment = AsyncMock(side_effect=ConnectionError("rpc"))
        assert await report_fulfillment(state, make_bid(), "0x" + "ab" * 32) is False

    @pytest.mark.asyncio
    async def test_reverted_report_returns_false(self, state, oev_network):
        oev_network.wait_for_receipt = AsyncMock(return_value={"status": 0})
        assert await report_fulfillment(state, make_bid(), "0x" + "ab" * 32) is False


class TestLiquidationAttemptStages:
    """Tests for stage transitions of a liquidation attempt."""

    def attempt_in(self, *stages):
        attempt = LiquidationAttempt(positions=[BIDDER])
        for stage in stages:
            attempt.advance(stage)
        return attempt

    def test_completed_attempt_can_be_reported(self):
        attempt = self.attempt_in(LiquidationStage.EXECUTING, LiquidationStage.COMPLETED)
        attempt.advance(LiquidationStage.REPORTED)
        assert attempt.stage == LiquidationStage.REPORTED
        assert attempt.history[-2:] == [LiquidationStage.COMPLETED, LiquidationStage.REPORTED]

    def test_failed_attempt_cannot_be_reported(self):
        attempt = self.attempt_in(LiquidationStage.BID_PLACED)
        attempt.fail("no award")
        with pytest.raises(ValueError):
            attempt.advance(LiquidationStage.REPORTED)
        assert attempt.stage == LiquidationStage.FAILED

    def test_unfinished_attempt_cannot_be_reported(self):
        attempt = self.attempt_in(LiquidationStage.EXECUTING)
        with pytest.raises(ValueError):
            attempt.advance(LiquidationStage.REPORTED)

    def test_reported_attempt_is_final(self):
        attempt = self.attempt_in(LiquidationStage.COMPLETED, LiquidationStage.REPORTED)
        with pytest.raises(ValueError):
            attempt.advance(LiquidationStage.REPORTED)
        with pytest.raises(ValueError):
            attempt.fail("late failure")

    @pytest.mark.parametrize("terminal", [LiquidationStage.COMPLETED, LiquidationStage.FAILED])
    def test_terminal_attempt_cannot_restart(self, terminal):
        attempt = self.attempt_in(terminal)
        with pytest.raises(ValueError):
            attempt.advance(LiquidationStage.BID_PLACED)
