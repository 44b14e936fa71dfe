"""
External API Clients
====================

- TargetChainClient: Compound III market, API3 contracts and liquidator on Base
- OevNetworkClient: OEV auction house on the OEV network
- SignedApiClient: Signed APIs serving OEV beacon values
"""

from .chain import ChainClient, TargetChainClient
from .oev_network import OevNetworkClient
from .signed_api import SignedApiClient, SignedApiError

__all__ = [
    "ChainClient",
    "TargetChainClient",
    "OevNetworkClient",
    "SignedApiClient",
    "SignedApiError",
]
