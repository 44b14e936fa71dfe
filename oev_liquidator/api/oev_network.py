"""
OEV Network Client
==================

Single responsibility: talk to the OEV auction house on the OEV network.
"""

import logging
from typing import List

from web3 import Web3

from ..config import config
from ..models import AwardedBid
from .chain import ChainClient, _load_abi, event_topic

logger = logging.getLogger(__name__)

AWARDED_BID_EVENT_SIGNATURE = "AwardedBid(address,bytes32,bytes32,bytes,uint256)"


class OevNetworkClient(ChainClient):
    """
    Async client for the OEV auction house.

    Handles:
    - Placing bids with an explicit expiration
    - Querying AwardedBid events for a bid topic
    - Reporting fulfillment of an awarded bid
    """

    def __init__(
        self,
        rpc_url: str = None,
        private_key: str = None,
        auction_house_address: str = None,
        timeout: float = None,
    ):
        super().__init__(
            rpc_url or config.oev_network_rpc_url,
            private_key or config.hot_wallet_private_key,
            timeout,
        )
        self.auction_house = self.w3.eth.contract(
            address=Web3.to_checksum_address(auction_house_address or config.oev_auction_house_address),
            abi=_load_abi("OevAuctionHouse.json"),
        )

    async def place_bid_with_expiration(
        self,
        bid_topic: str,
        chain_id: int,
        bid_amount: int,
        bid_details: str,
        max_collateral_amount: int,
        max_protocol_fee_amount: int,
        expiration_timestamp: int,
    ) -> str:
        """
        Submit a bid to the auction house.

        Returns:
            Transaction hash on the OEV network
        """
        function = self.auction_house.functions.placeBidWithExpiration(
            Web3.to_bytes(hexstr=bid_topic),
            chain_id,
            bid_amount,
            Web3.to_bytes(hexstr=bid_details),
            max_collateral_amount,
            max_protocol_fee_amount,
            expiration_timestamp,
        )
        gas_limit = await self.estimate_gas(function)
        return await self.send_transaction(function, gas_limit)

    async def get_awarded_bids(self, bid_topic: str, block_range: int) -> List[AwardedBid]:
        """
        Get AwardedBid events for `bid_topic` within the last `block_range` blocks.

        Returns:
            Awards in log order (empty if the auction is not yet awarded)
        """
        block_number = await self.get_block_number()
        logs = await self.w3.eth.get_logs({
            "address": self.auction_house.address,
            "fromBlock": max(block_number - block_range, 0),
            "toBlock": block_number,
            "topics": [event_topic(AWARDED_BID_EVENT_SIGNATURE), None, bid_topic],
        })

        awarded_bid = self.auction_house.events.AwardedBid()
        awards = []
        for log in logs:
            event = awarded_bid.process_log(log)
            args = event["args"]
            awards.append(AwardedBid(
                bidder=args["bidder"],
                bid_topic=Web3.to_hex(args["bidTopic"]),
                bid_id=Web3.to_hex(args["bidId"]),
                award_details=bytes(args["awardDetails"]),
                block_number=event["blockNumber"],
            ))
        return awards

    async def report_fulfillment(self, bid_topic: str, bid_details_hash: str, fulfillment_tx_hash: str) -> str:
        """
        Report that an awarded bid was fulfilled on the target chain.

        Returns:
            Transaction hash on the OEV network
        """
        function = self.auction_house.functions.reportFulfillment(
            Web3.to_bytes(hexstr=bid_topic),
            Web3.to_bytes(hexstr=bid_details_hash),
            Web3.to_bytes(hexstr=fulfillment_tx_hash),
        )
        gas_limit = await self.estimate_gas(function)
        return await self.send_transaction(function, gas_limit)
