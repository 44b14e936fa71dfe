"""Shared fixtures for OEV liquidator tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3

from oev_liquidator.config import config
from oev_liquidator.core.state import ProcessState, StateStore


def address(n: int) -> str:
    """Deterministic checksummed test address."""
    return Web3.to_checksum_address(f"0x{n:040x}")


LIQUIDATOR = address(0xA11CE)
BIDDER = address(0xB0B)


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    """Remove rate limiting delays so tests run instantly."""
    monkeypatch.setattr(config, "min_rpc_delay_sec", 0)
    monkeypatch.setattr(config, "signed_api_fetch_delay_sec", 0)
    monkeypatch.setattr(config, "oev_poll_award_bid_delay_sec", 0)
    monkeypatch.setattr(config, "max_borrower_details_multicall", 100)
    monkeypatch.setattr(config, "dapp_id", 1)


@pytest.fixture
def target_chain():
    """Mock target chain client."""
    client = MagicMock()
    client.address = BIDDER
    client.liquidator.address = LIQUIDATOR
    client.get_block_number = AsyncMock(return_value=1000)
    client.get_chain_id = AsyncMock(return_value=8453)
    client.get_borrowers = AsyncMock(return_value=[])
    client.get_accounts_details = AsyncMock(return_value=([], [], [], []))
    client.simulate_liquidation_profit = AsyncMock(return_value=10 ** 18)
    client.fetch_data_feed_ids = AsyncMock(return_value=[])
    client.fetch_data_feeds_details = AsyncMock(return_value=[])
    client.estimate_gas = AsyncMock(return_value=500_000)
    client.send_transaction = AsyncMock(return_value="0x" + "ab" * 32)
    client.wait_for_receipt = AsyncMock(return_value={"status": 1, "gasUsed": 400_000, "logs": []})
    client.get_absorbed_borrowers = MagicMock(return_value=[])
    client.encode_simulate_oev_update = MagicMock(side_effect=lambda dapp_id, data: f"0xsim{len(data)}")
    return client


@pytest.fixture
def oev_network():
    """Mock OEV network client."""
    client = MagicMock()
    client.address = BIDDER
    client.place_bid_with_expiration = AsyncMock(return_value="0x" + "cd" * 32)
    client.wait_for_receipt = AsyncMock(return_value={"status": 1})
    client.get_awarded_bids = AsyncMock(return_value=[])
    client.report_fulfillment = AsyncMock(return_value="0x" + "ef" * 32)
    return client


@pytest.fixture
def signed_api():
    """Mock Signed API client."""
    client = MagicMock()
    client.fetch_first = AsyncMock(return_value=None)
    client.close = AsyncMock()
    return client


@pytest.fixture
def state(target_chain, oev_network, signed_api):
    return ProcessState(target_chain=target_chain, oev_network=oev_network, signed_api=signed_api)


@pytest.fixture
def store(state):
    store = StateStore()
    store.initialize(state)
    return store


def accounts_details(rows):
    """Build get_accounts_details output from (borrow, max_borrow, collateral, liquidatable) rows."""
    return (
        [row[0] for row in rows],
        [row[1] for row in rows],
        [row[2] for row in rows],
        [row[3] for row in rows],
    )
