"""
Price Feed Models
=================

API3 dAPIs, the data feeds (beacon or beacon set) they point to, and the
signed values served by Signed APIs. Hex values are 0x-prefixed strings.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Api3Feed:
    """A dAPI watched by the bot."""
    dapi_name: str       # bytes32 encoded name
    dapi_name_hash: str  # keccak256(abi.encodePacked(dapi_name))
    proxy_address: str
    oev_enabled: bool


@dataclass(frozen=True)
class Beacon:
    """A single price source: an Airnode signing values for a template."""
    airnode_address: str
    template_id: str
    beacon_id: str


@dataclass(frozen=True)
class DataFeed:
    """A beacon or beacon set. A single-beacon feed shares the beacon's ID."""
    data_feed_id: str
    beacons: Tuple[Beacon, ...]


@dataclass(frozen=True)
class SignedData:
    """A signed value for one beacon, as served by a Signed API."""
    airnode: str
    template_id: str
    timestamp: int
    encoded_value: str
    signature: str
    beacon_id: str

    @classmethod
    def from_response(cls, beacon_id: str, value: dict) -> "SignedData":
        """
        Build from a Signed API response entry.

        Args:
            beacon_id: Key under which the value was found
            value: {"airnode", "templateId", "timestamp", "encodedValue", "signature"}
        """
        return cls(
            airnode=value["airnode"],
            template_id=value["templateId"],
            timestamp=int(value["timestamp"]),
            encoded_value=value["encodedValue"],
            signature=value["signature"],
            beacon_id=beacon_id,
        )


@dataclass(frozen=True)
class DataFeedWithSignedData:
    """An OEV data feed with the latest signed value per beacon (None if unavailable)."""
    data_feed: DataFeed
    signed_data: Tuple[Optional[SignedData], ...]
