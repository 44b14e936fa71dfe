"""
Target Chain Client
===================

Single responsibility: talk to the target chain (Base) over JSON-RPC.

Covers the reads, simulations, log queries and transaction submission used
by the bot. Simulations run through the OEV extension's multicall so that a
hypothetical OEV price update can be applied before reading account health.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import aiohttp
from eth_abi import decode
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from ..config import ZERO_ADDRESS, config

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).parent / "abi"

ACCOUNTS_DETAILS_TYPES = ["uint256[]", "uint256[]", "uint256[]", "bool[]"]
WITHDRAW_EVENT_SIGNATURE = "Withdraw(address,address,uint256)"
ABSORB_COLLATERAL_EVENT_SIGNATURE = "AbsorbCollateral(address,address,address,uint256,uint256)"

# Accounts details as returned by the liquidator contract:
# (borrowsUsd, maxBorrowsUsd, collateralsUsd, areLiquidatable)
AccountsDetails = Tuple[List[int], List[int], List[int], List[bool]]


def _load_abi(name: str) -> list:
    data = json.loads((ABI_DIR / name).read_text())
    # Accept both bare ABI lists and Hardhat artifacts
    if isinstance(data, dict) and "abi" in data:
        return data["abi"]
    if isinstance(data, list):
        return data
    raise ValueError(f"Unrecognised ABI format in {name}")


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


class ChainClient:
    """
    Shared plumbing for a signing JSON-RPC client.

    Subclasses add the contracts they talk to.
    """

    def __init__(self, rpc_url: str, private_key: str, timeout: float = None):
        timeout = timeout if timeout is not None else config.rpc_timeout_sec
        provider = AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
        self.w3 = AsyncWeb3(provider)
        self.account = self.w3.eth.account.from_key(private_key)

    @property
    def address(self) -> str:
        return self.account.address

    async def get_block_number(self) -> int:
        return await self.w3.eth.get_block_number()

    async def get_chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def estimate_gas(self, function, value: int = 0) -> int:
        """Estimate gas for a contract call sent from the hot wallet."""
        return await function.estimate_gas({"from": self.address, "value": value})

    async def send_transaction(self, function, gas_limit: int, value: int = 0) -> str:
        """
        Sign and broadcast a contract call.

        Uses the node's gas price and the pending nonce of the hot wallet.

        Returns:
            Transaction hash (0x-prefixed)
        """
        nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
        gas_price = await self.w3.eth.gas_price
        tx = await function.build_transaction({
            "from": self.address,
            "nonce": nonce,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "value": value,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[dict]:
        """
        Wait for one confirmation.

        Returns:
            The receipt, or None if it did not arrive within `timeout` seconds
        """
        try:
            return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            logger.warning(f"Timed out after {timeout}s waiting for receipt of {tx_hash}")
            return None


class TargetChainClient(ChainClient):
    """
    Async client for the chain hosting the Compound III market.

    Handles:
    - Borrower discovery from Comet Withdraw logs
    - dAPI to data feed resolution (Api3ServerV1, AirseekerRegistry)
    - Simulated account health reads with hypothetical OEV updates
    - Liquidation profit simulation and bid-protected liquidation calls
    """

    def __init__(
        self,
        rpc_url: str = None,
        private_key: str = None,
        liquidator_address: str = None,
        comet_address: str = None,
        api3_server_v1_address: str = None,
        oev_extension_address: str = None,
        airseeker_registry_address: str = None,
        timeout: float = None,
    ):
        super().__init__(rpc_url or config.rpc_url, private_key or config.hot_wallet_private_key, timeout)

        def contract(address: str, abi_name: str):
            return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=_load_abi(abi_name))

        self.comet = contract(comet_address or config.comet_address, "Comet.json")
        self.liquidator = contract(
            liquidator_address or config.liquidator_contract_address, "Compound3Liquidator.json"
        )
        self.api3_server_v1 = contract(api3_server_v1_address or config.api3_server_v1_address, "Api3ServerV1.json")
        self.oev_extension = contract(
            oev_extension_address or config.oev_extension_address, "Api3ServerV1OevExtension.json"
        )
        self.airseeker_registry = contract(
            airseeker_registry_address or config.airseeker_registry_address, "AirseekerRegistry.json"
        )

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    async def get_borrowers(self, from_block: int, to_block: int) -> List[str]:
        """
        Get the accounts that borrowed or withdrew in a block range.

        Borrowing from Comet withdraws the base asset, so every borrower shows
        up as the `src` of a Withdraw event.
        """
        logs = await self.w3.eth.get_logs({
            "address": self.comet.address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [[event_topic(WITHDRAW_EVENT_SIGNATURE)]],
        })
        withdraw = self.comet.events.Withdraw()
        return [withdraw.process_log(log)["args"]["src"] for log in logs]

    async def get_accounts_details(
        self,
        accounts: Sequence[str],
        simulate_calls: Sequence[str] = (),
    ) -> AccountsDetails:
        """
        Read account health from the liquidator contract.

        Args:
            accounts: Borrower addresses
            simulate_calls: Encoded OEV extension calls (hypothetical price
                updates) applied before the read

        Returns:
            (borrowsUsd, maxBorrowsUsd, collateralsUsd, areLiquidatable)
        """
        accounts = list(accounts)
        if not simulate_calls:
            result = await self.liquidator.functions.getAccountsDetails(accounts).call()
            return tuple(list(values) for values in result)

        calldata = self.liquidator.encode_abi("getAccountsDetails", args=[accounts])
        returndata = await self.simulate(simulate_calls, calldata)
        return tuple(list(values) for values in decode(ACCOUNTS_DETAILS_TYPES, returndata))

    # -------------------------------------------------------------------------
    # Simulation
    # -------------------------------------------------------------------------

    def encode_simulate_oev_update(self, dapp_id: int, signed_data: Sequence[bytes]) -> str:
        """Encode a `simulateDappOevDataFeedUpdate` call for the OEV extension multicall."""
        return self.oev_extension.encode_abi("simulateDappOevDataFeedUpdate", args=[dapp_id, list(signed_data)])

    async def simulate(self, simulate_calls: Sequence[str], target_calldata: str) -> bytes:
        """
        Run `simulate_calls` followed by a call to the liquidator, as a static call.

        Returns:
            Raw returndata of the liquidator call
        """
        external_call = self.oev_extension.encode_abi(
            "simulateExternalCall", args=[self.liquidator.address, target_calldata]
        )
        returndata = await self.oev_extension.functions.multicall(
            [*simulate_calls, external_call]
        ).call({"from": ZERO_ADDRESS})
        (result,) = decode(["bytes"], returndata[-1])
        return result

    async def simulate_liquidation_profit(
        self,
        simulate_calls: Sequence[str],
        params: tuple,
    ) -> int:
        """Simulated profit (wei) of liquidating after the hypothetical update."""
        calldata = self.liquidator.encode_abi("liquidate", args=[params])
        returndata = await self.simulate(simulate_calls, calldata)
        (profit,) = decode(["uint256"], returndata)
        return profit

    # -------------------------------------------------------------------------
    # Data Feeds
    # -------------------------------------------------------------------------

    async def fetch_data_feed_ids(self, dapi_name_hashes: Sequence[str]) -> List[str]:
        """Resolve dAPI name hashes to data feed IDs in a single multicall."""
        calldata = [
            self.api3_server_v1.encode_abi("dapiNameHashToDataFeedId", args=[Web3.to_bytes(hexstr=name_hash)])
            for name_hash in dapi_name_hashes
        ]
        returndata = await self.api3_server_v1.functions.multicall(calldata).call()
        return [Web3.to_hex(decode(["bytes32"], data)[0]) for data in returndata]

    async def fetch_data_feeds_details(self, data_feed_ids: Sequence[str]) -> List[bytes]:
        """Fetch raw AirseekerRegistry details (encoded beacons) in a single multicall."""
        calldata = [
            self.airseeker_registry.encode_abi("dataFeedIdToDetails", args=[Web3.to_bytes(hexstr=feed_id)])
            for feed_id in data_feed_ids
        ]
        returndata = await self.airseeker_registry.functions.multicall(calldata).call()
        return [decode(["bytes"], data)[0] for data in returndata]

    # -------------------------------------------------------------------------
    # Liquidation
    # -------------------------------------------------------------------------

    def pay_bid_and_liquidate(
        self,
        dapp_id: int,
        bid_amount: int,
        signed_data_timestamp_cutoff: int,
        award_details: bytes,
        signed_data_array: Sequence[Sequence[bytes]],
        params: tuple,
    ):
        """Build the bid-protected liquidation call (not sent)."""
        return self.liquidator.functions.payBidAndLiquidate(
            dapp_id,
            bid_amount,
            signed_data_timestamp_cutoff,
            award_details,
            [list(signed_data) for signed_data in signed_data_array],
            params,
        )

    def get_absorbed_borrowers(self, receipt: dict) -> List[str]:
        """Borrowers named by AbsorbCollateral events in a receipt, in log order."""
        absorb_topic = event_topic(ABSORB_COLLATERAL_EVENT_SIGNATURE)
        absorb = self.comet.events.AbsorbCollateral()
        borrowers = []
        for log in receipt.get("logs", []):
            topics = [Web3.to_hex(topic) for topic in log.get("topics", [])]
            if not topics or topics[0] != absorb_topic:
                continue
            if Web3.to_checksum_address(log["address"]) != self.comet.address:
                continue
            borrowers.append(absorb.process_log(log)["args"]["borrower"])
        return borrowers

