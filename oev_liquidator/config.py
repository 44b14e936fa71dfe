"""
Configuration for the OEV Liquidation Bot

All settings in one place for easy tuning. Values come from the environment
(optionally a .env file in the project root) with sensible defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import os

# Load .env file from project root
from dotenv import load_dotenv
from web3 import Web3

_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    return int(_env_str(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env_str(name, str(default)))


# =============================================================================
# Protocol Constants
# =============================================================================

# OEV auction parameters (seconds)
OEV_PROTOCOL_VERSION = 1
OEV_AUCTION_LENGTH_SECONDS = 30
OEV_BIDDING_PHASE_LENGTH_SECONDS = 25
OEV_BIDDING_PHASE_BUFFER_SECONDS = 3

# Blocks to look back when searching for the award of our bid
OEV_AWARD_BLOCK_RANGE = 10_000
OEV_AWARD_POLL_RETRIES = 25

# Percentage of the expected liquidation profit offered in the auction
BID_PROFIT_PERCENTAGE = 80

# Loan-to-value (%) from which a significant position is worth watching closely
INTERESTING_LOAN_TO_VALUE_PCT = 80

# Gas limit multiplier applied to the node estimate (%)
GAS_LIMIT_MULTIPLIER_PCT = 200

# Scheduling
RUN_IN_LOOP_HARD_TIMEOUT_MULTIPLIER = 5
LIQUIDATION_HARD_TIMEOUT_SEC = 60.0

# How many "close to liquidation" positions to log on each discovery pass
POSITIONS_CLOSE_TO_LIQUIDATION_LOG_SIZE = 10

# Integer precision used for percentage math on token amounts
PERCENTAGE_VALUE_MANTISSA = 10 ** 10

# The liquidator contract reports USD values with 8 decimals
PRICE_FACTOR_SCALE = 10 ** 8

MAX_UINT256 = 2 ** 256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Signed APIs serving OEV beacon values (queried redundantly)
API3_SIGNED_API_BASE_URL = "https://signed-api.api3.org/public"
NODARY_SIGNED_API_BASE_URL = "https://signed-api.nodary.io/public"

# =============================================================================
# Contract Addresses
# =============================================================================

# Target chain (Base)
COMET_ADDRESS = "0xa193bcE4554663FECde688D5921dF38D4D41AA96"
API3_SERVER_V1_ADDRESS = "0x709944a48cAf83535e43471680fDA4905FB3920a"

# OEV network
OEV_AUCTION_HOUSE_ADDRESS = "0x34f13A5C0AD750d212267bcBc230c87AEFD35CC5"

# dAPIs used by the Compound III USDC market on Base: (dAPI name, proxy, OEV enabled)
COMPOUND3_DAPIS = [
    ("cbETH/ETH Exchange Rate", "0x7583f6435cAD95bcF30C2dD7fDbfD3c5Ab58Ce4C", True),
    ("ETH/USD", "0x86313242dBfedD9C52733a0Ed384E917424A7436", True),
    ("wstETH/stETH Exchange Rate", "0x3739c04CfE9d4750Bb40fc46904d592f3ed8EdEf", True),
    ("stETH/USD", "0x93d2D4Aae8143E2a067a54C8138Dc8054Ad79910", True),
    ("USDC/USD", "0x773f1a8E77Bd9e91a84bD80Bf35e67e4989D5C4C", True),
]


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Market
    # -------------------------------------------------------------------------
    comet_address: str = field(default_factory=lambda: _env_str("COMET_ADDRESS", COMET_ADDRESS))
    liquidator_contract_address: Optional[str] = field(
        default_factory=lambda: _env_str("LIQUIDATOR_CONTRACT_ADDRESS")
    )
    api3_server_v1_address: str = field(
        default_factory=lambda: _env_str("API3_SERVER_V1_ADDRESS", API3_SERVER_V1_ADDRESS)
    )
    oev_extension_address: Optional[str] = field(
        default_factory=lambda: _env_str("API3_SERVER_V1_OEV_EXTENSION_ADDRESS")
    )
    airseeker_registry_address: Optional[str] = field(
        default_factory=lambda: _env_str("AIRSEEKER_REGISTRY_ADDRESS")
    )
    oev_auction_house_address: str = field(
        default_factory=lambda: _env_str("OEV_AUCTION_HOUSE_ADDRESS", OEV_AUCTION_HOUSE_ADDRESS)
    )

    # dApp ID assigned to the market by the OEV auction house
    dapp_id: int = field(default_factory=lambda: _env_int("DAPP_ID", 1))

    # Minimum collateral (USD) for a position to be considered significant
    min_position_usd: str = field(default_factory=lambda: _env_str("MIN_POSITION_USD", "20"))

    # -------------------------------------------------------------------------
    # Log Scanning
    # -------------------------------------------------------------------------
    borrower_logs_lookback_blocks: int = field(
        default_factory=lambda: _env_int("BORROWER_LOGS_LOOKBACK_BLOCKS", 100)
    )
    max_log_range_blocks: int = field(default_factory=lambda: _env_int("MAX_LOG_RANGE_BLOCKS", 10_000))

    # -------------------------------------------------------------------------
    # RPC Settings
    # -------------------------------------------------------------------------
    # Positions read per simulated multicall
    max_borrower_details_multicall: int = field(
        default_factory=lambda: _env_int("MAX_BORROWER_DETAILS_MULTICALL", 100)
    )

    # Delay between consecutive rate limited RPC calls (seconds)
    min_rpc_delay_sec: float = field(default_factory=lambda: _env_float("MIN_RPC_DELAY_SEC", 0.1))

    # Delay multiplier between Signed API calls for different Airnodes (seconds)
    signed_api_fetch_delay_sec: float = field(
        default_factory=lambda: _env_float("SIGNED_API_FETCH_DELAY_SEC", 0.05)
    )
    signed_api_timeout_sec: float = field(default_factory=lambda: _env_float("SIGNED_API_TIMEOUT_SEC", 10.0))
    signed_api_urls: List[str] = field(
        default_factory=lambda: [API3_SIGNED_API_BASE_URL, NODARY_SIGNED_API_BASE_URL]
    )

    rpc_timeout_sec: float = field(default_factory=lambda: _env_float("RPC_TIMEOUT_SEC", 10.0))

    # -------------------------------------------------------------------------
    # Liquidations
    # -------------------------------------------------------------------------
    max_positions_to_liquidate: int = field(default_factory=lambda: _env_int("MAX_POSITIONS_TO_LIQUIDATE", 3))
    liquidation_transaction_timeout_sec: float = field(
        default_factory=lambda: _env_float("LIQUIDATION_TRANSACTION_TIMEOUT_SEC", 15.0)
    )
    bid_transaction_timeout_sec: float = field(
        default_factory=lambda: _env_float("BID_TRANSACTION_TIMEOUT_SEC", 15.0)
    )
    oev_poll_award_bid_delay_sec: float = field(
        default_factory=lambda: _env_float("OEV_POLL_AWARD_BID_DELAY_SEC", 1.0)
    )

    # -------------------------------------------------------------------------
    # Loop Frequencies (seconds)
    # -------------------------------------------------------------------------
    initialize_target_chain_timeout_sec: float = field(
        default_factory=lambda: _env_float("INITIALIZE_TARGET_CHAIN_TIMEOUT_SEC", 300.0)
    )
    fetch_and_filter_new_positions_frequency_sec: float = field(
        default_factory=lambda: _env_float("FETCH_AND_FILTER_NEW_POSITIONS_FREQUENCY_SEC", 60.0)
    )
    reset_interesting_positions_frequency_sec: float = field(
        default_factory=lambda: _env_float("RESET_INTERESTING_POSITIONS_FREQUENCY_SEC", 600.0)
    )
    reset_current_positions_frequency_sec: float = field(
        default_factory=lambda: _env_float("RESET_CURRENT_POSITIONS_FREQUENCY_SEC", 3600.0)
    )
    initiate_oev_liquidations_frequency_sec: float = field(
        default_factory=lambda: _env_float("INITIATE_OEV_LIQUIDATIONS_FREQUENCY_SEC", 5.0)
    )

    # Random start-of-cycle delay as a percentage of the loop frequency
    run_in_loop_max_wait_time_percentage: float = field(
        default_factory=lambda: _env_float("RUN_IN_LOOP_MAX_WAIT_TIME_PERCENTAGE", 10.0)
    )

    # -------------------------------------------------------------------------
    # Snapshot Paths
    # -------------------------------------------------------------------------
    data_dir: Path = field(default_factory=lambda: Path(_env_str("DATA_DIR", str(_project_root / "data"))))

    @property
    def all_positions_path(self) -> Path:
        return self.data_dir / "all-positions.json"

    @property
    def positions_to_watch_path(self) -> Path:
        return self.data_dir / "positions-to-watch.json"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: _env_str("LOG_FILE", str(_project_root / "logs" / "bot.log")))

    # -------------------------------------------------------------------------
    # Secrets (from environment)
    # -------------------------------------------------------------------------
    @property
    def hot_wallet_private_key(self) -> Optional[str]:
        return _env_str("HOT_WALLET_PRIVATE_KEY")

    @property
    def rpc_url(self) -> Optional[str]:
        return _env_str("RPC_URL")

    @property
    def oev_network_rpc_url(self) -> Optional[str]:
        return _env_str("OEV_NETWORK_RPC_URL", "https://oev.rpc.api3.org")

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @property
    def min_collateral_usd(self) -> int:
        """
        Minimum collateral in the liquidator contract's USD scale.

        MIN_POSITION_USD is a decimal string (e.g. "20.5") converted with 18
        decimals of precision first, then rescaled to 8 decimals.
        """
        min_position_usd_e18 = Web3.to_wei(self.min_position_usd, "ether")
        return min_position_usd_e18 * PRICE_FACTOR_SCALE // 10 ** 18

    def validate(self):
        """
        Check that the settings needed to run the bot are present.

        Raises:
            ValueError: If any required setting is missing or invalid
        """
        missing = []
        if not self.hot_wallet_private_key:
            missing.append("HOT_WALLET_PRIVATE_KEY")
        if not self.rpc_url:
            missing.append("RPC_URL")
        if not self.liquidator_contract_address:
            missing.append("LIQUIDATOR_CONTRACT_ADDRESS")
        if not self.oev_extension_address:
            missing.append("API3_SERVER_V1_OEV_EXTENSION_ADDRESS")
        if not self.airseeker_registry_address:
            missing.append("AIRSEEKER_REGISTRY_ADDRESS")
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")

        if self.max_borrower_details_multicall <= 0:
            raise ValueError("MAX_BORROWER_DETAILS_MULTICALL must be positive")
        if self.max_log_range_blocks <= 0:
            raise ValueError("MAX_LOG_RANGE_BLOCKS must be positive")
        if not 0 <= self.run_in_loop_max_wait_time_percentage <= 100:
            raise ValueError("RUN_IN_LOOP_MAX_WAIT_TIME_PERCENTAGE must be between 0 and 100")


# Global config instance
config = Config()
