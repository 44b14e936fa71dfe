"""
Price Feeds
===========

Resolves the market's dAPIs to data feeds, derives their OEV counterparts and
prepares the signed data used for hypothetical OEV updates.

Flow per liquidation cycle:
1. resolve_data_feeds: dAPI -> data feed ID -> beacons (beacons cached forever)
2. get_oev_data_feeds: base feed -> OEV feed (cached per base feed ID)
3. get_oev_feed_values: latest signed values for all OEV beacons
4. prepare_oev_updates: encoded signed data and simulation calls per feed
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3

from ..config import config
from ..models import Api3Feed, Beacon, DataFeed, DataFeedWithSignedData, SignedData
from .state import ProcessState, StateStore

logger = logging.getLogger(__name__)

SIGNED_DATA_TYPES = ["address", "bytes32", "uint256", "bytes", "bytes"]


def _bytes32(value: str) -> bytes:
    return Web3.to_bytes(hexstr=value)


# =============================================================================
# Identifiers
# =============================================================================

def encode_dapi_name(name: str) -> str:
    """Encode a dAPI name as a right-padded bytes32 string."""
    encoded = name.encode("utf-8")
    if len(encoded) > 31:
        raise ValueError(f"dAPI name too long: {name}")
    return Web3.to_hex(encoded.ljust(32, b"\0"))


def derive_dapi_name_hash(dapi_name: str) -> str:
    return Web3.to_hex(Web3.solidity_keccak(["bytes32"], [_bytes32(dapi_name)]))


def derive_beacon_id(airnode_address: str, template_id: str) -> str:
    """keccak256(abi.encodePacked(airnode, templateId))"""
    return Web3.to_hex(Web3.solidity_keccak(
        ["address", "bytes32"],
        [Web3.to_checksum_address(airnode_address), _bytes32(template_id)],
    ))


def derive_beacon_set_id(beacon_ids: Sequence[str]) -> str:
    """keccak256(abi.encode(beaconIds))"""
    return Web3.to_hex(Web3.keccak(encode(["bytes32[]"], [[_bytes32(beacon_id) for beacon_id in beacon_ids]])))


def derive_oev_template_id(template_id: str) -> str:
    return Web3.to_hex(Web3.solidity_keccak(["bytes32"], [_bytes32(template_id)]))


def prepare_api3_feeds(dapis: Iterable[Tuple[str, str, bool]]) -> Tuple[Api3Feed, ...]:
    """
    Build the watched feeds from (dAPI name, proxy address, OEV enabled) entries.
    """
    feeds = []
    for name, proxy_address, oev_enabled in dapis:
        dapi_name = encode_dapi_name(name)
        feeds.append(Api3Feed(
            dapi_name=dapi_name,
            dapi_name_hash=derive_dapi_name_hash(dapi_name),
            proxy_address=Web3.to_checksum_address(proxy_address),
            oev_enabled=oev_enabled,
        ))
    return tuple(feeds)


# =============================================================================
# Data Feed Resolution
# =============================================================================

def decode_data_feed_details(details: bytes) -> Optional[Tuple[Beacon, ...]]:
    """
    Decode AirseekerRegistry data feed details.

    A beacon is encoded as (address, bytes32), a beacon set as
    (address[], bytes32[]). Unregistered feeds have empty details.

    Returns:
        Beacons of the feed, or None for empty details
    """
    if len(details) == 0:
        return None

    if len(details) == 64:
        airnode, template_id = decode(["address", "bytes32"], details)
        airnodes, template_ids = [airnode], [template_id]
    else:
        airnodes, template_ids = decode(["address[]", "bytes32[]"], details)

    beacons = []
    for airnode, template_id in zip(airnodes, template_ids):
        airnode = Web3.to_checksum_address(airnode)
        template_id = Web3.to_hex(template_id)
        beacons.append(Beacon(
            airnode_address=airnode,
            template_id=template_id,
            beacon_id=derive_beacon_id(airnode, template_id),
        ))
    return tuple(beacons)


def oev_enabled_feeds(state: ProcessState) -> List[Api3Feed]:
    """Watched dAPIs whose proxy has OEV enabled. Only these can be updated through an auction."""
    return [feed for feed in state.api3_feeds if feed.oev_enabled]


def current_data_feeds(state: ProcessState) -> List[DataFeed]:
    """
    Data feeds of the OEV-enabled dAPIs according to the cached mappings.

    dAPIs whose feed ID or beacons are unknown are logged and skipped.
    """
    data_feeds = []
    for feed in oev_enabled_feeds(state):
        data_feed_id = state.dapi_name_hash_to_data_feed_id.get(feed.dapi_name_hash)
        if not data_feed_id:
            logger.warning(f"Data feed ID not found for dAPI {feed.dapi_name} (proxy {feed.proxy_address})")
            continue
        beacons = state.data_feed_id_to_beacons.get(data_feed_id)
        if not beacons:
            logger.warning(f"Beacons not found for data feed {data_feed_id}")
            continue
        data_feeds.append(DataFeed(data_feed_id=data_feed_id, beacons=beacons))
    return data_feeds


async def resolve_data_feeds(store: StateStore) -> List[DataFeed]:
    """
    Resolve the OEV-enabled dAPIs to their current data feeds.

    dAPI resolution is a single batched read. If it fails, the last known
    mapping is used. Beacons of newly seen feeds are fetched once and cached.
    """
    state = store.get()
    feeds = oev_enabled_feeds(state)
    skipped = len(state.api3_feeds) - len(feeds)
    if skipped:
        logger.debug(f"Skipping {skipped} dAPI(s) without OEV enabled")
    if not feeds:
        logger.warning("No OEV-enabled dAPIs to resolve")
        return []
    name_hashes = [feed.dapi_name_hash for feed in feeds]

    try:
        data_feed_ids = await state.target_chain.fetch_data_feed_ids(name_hashes)
    except Exception as e:
        logger.error(f"Failed to fetch data feed IDs, using cached values: {e}")
        return current_data_feeds(store.get())

    state = store.update(lambda s: s.with_mapping_updates(
        "dapi_name_hash_to_data_feed_id", dict(zip(name_hashes, data_feed_ids))
    ))

    missing_ids = list(dict.fromkeys(
        feed_id for feed_id in data_feed_ids if feed_id not in state.data_feed_id_to_beacons
    ))
    if missing_ids:
        logger.info(f"Fetching details for {len(missing_ids)} new data feed(s)")
        try:
            details = await state.target_chain.fetch_data_feeds_details(missing_ids)
        except Exception as e:
            logger.error(f"Failed to fetch data feed details: {e}")
            details = []

        new_beacons = {}
        for feed_id, detail in zip(missing_ids, details):
            beacons = decode_data_feed_details(detail)
            if beacons is None:
                logger.warning(f"Data feed {feed_id} is not registered")
                continue
            new_beacons[feed_id] = beacons

        if new_beacons:
            store.update(lambda s: s.with_mapping_updates("data_feed_id_to_beacons", new_beacons))

    return current_data_feeds(store.get())


# =============================================================================
# OEV Feeds
# =============================================================================

def derive_oev_data_feed(data_feed: DataFeed) -> DataFeed:
    """
    Derive the OEV feed of a base feed.

    Each beacon keeps its Airnode and uses keccak256(templateId) as template.
    A single-beacon feed is identified by its beacon ID, otherwise by the
    beacon set ID over all OEV beacons.
    """
    oev_beacons = []
    for beacon in data_feed.beacons:
        oev_template_id = derive_oev_template_id(beacon.template_id)
        oev_beacons.append(Beacon(
            airnode_address=beacon.airnode_address,
            template_id=oev_template_id,
            beacon_id=derive_beacon_id(beacon.airnode_address, oev_template_id),
        ))

    if len(oev_beacons) == 1:
        oev_data_feed_id = oev_beacons[0].beacon_id
    else:
        oev_data_feed_id = derive_beacon_set_id([beacon.beacon_id for beacon in oev_beacons])

    return DataFeed(data_feed_id=oev_data_feed_id, beacons=tuple(oev_beacons))


def get_oev_data_feeds(store: StateStore, data_feeds: Sequence[DataFeed]) -> List[DataFeed]:
    """OEV feeds for `data_feeds`, derived once per base feed ID."""
    cached = store.get().oev_data_feeds
    derived = {
        data_feed.data_feed_id: derive_oev_data_feed(data_feed)
        for data_feed in data_feeds
        if data_feed.data_feed_id not in cached
    }
    if derived:
        cached = store.update(lambda s: s.with_mapping_updates("oev_data_feeds", derived)).oev_data_feeds

    return [cached[data_feed.data_feed_id] for data_feed in data_feeds]


async def get_oev_feed_values(
    signed_api,
    oev_data_feeds: Sequence[DataFeed],
    delay_sec: float = None,
) -> List[DataFeedWithSignedData]:
    """
    Fetch the latest signed values for all beacons of the OEV feeds.

    One request race per Airnode, started `index * delay_sec` apart. An
    Airnode without a response, or a beacon missing from its response,
    yields None for that beacon.
    """
    delay_sec = delay_sec if delay_sec is not None else config.signed_api_fetch_delay_sec

    beacons_by_airnode: Dict[str, List[str]] = {}
    for data_feed in oev_data_feeds:
        for beacon in data_feed.beacons:
            beacons_by_airnode.setdefault(beacon.airnode_address, []).append(beacon.beacon_id)

    logger.info(f"Fetching signed data for {len(beacons_by_airnode)} Airnode(s)")

    async def fetch_airnode(index: int, airnode: str) -> Dict[str, SignedData]:
        await asyncio.sleep(index * delay_sec)
        response = await signed_api.fetch_first(airnode)
        if response is None:
            return {}

        values = {}
        for beacon_id in beacons_by_airnode[airnode]:
            value = response.get(beacon_id)
            if not value:
                logger.warning(f"Beacon {beacon_id} not found in signed data of Airnode {airnode}")
                continue
            values[beacon_id] = SignedData.from_response(beacon_id, value)
        return values

    airnodes = list(beacons_by_airnode)
    results = await asyncio.gather(*(fetch_airnode(i, airnode) for i, airnode in enumerate(airnodes)))
    signed_data_by_airnode = dict(zip(airnodes, results))

    return [
        DataFeedWithSignedData(
            data_feed=data_feed,
            signed_data=tuple(
                signed_data_by_airnode[beacon.airnode_address].get(beacon.beacon_id)
                for beacon in data_feed.beacons
            ),
        )
        for data_feed in oev_data_feeds
    ]


def encode_signed_data_for_oev_update(
    data_feed: DataFeed,
    oev_feed_value: DataFeedWithSignedData,
) -> List[bytes]:
    """
    ABI-encode signed data for an OEV update of `data_feed`.

    Values are encoded with the base template ID; the contract derives the
    OEV template itself. A missing value is encoded with zero timestamp and
    empty value and signature.
    """
    encoded = []
    for beacon, oev_beacon, signed_data in zip(
        data_feed.beacons, oev_feed_value.data_feed.beacons, oev_feed_value.signed_data
    ):
        airnode = Web3.to_checksum_address(oev_beacon.airnode_address)
        template_id = _bytes32(beacon.template_id)
        if signed_data is None:
            encoded.append(encode(SIGNED_DATA_TYPES, [airnode, template_id, 0, b"", b""]))
            continue
        encoded.append(encode(SIGNED_DATA_TYPES, [
            airnode,
            template_id,
            signed_data.timestamp,
            Web3.to_bytes(hexstr=signed_data.encoded_value),
            Web3.to_bytes(hexstr=signed_data.signature),
        ]))
    return encoded


def prepare_oev_updates(
    state: ProcessState,
    data_feeds: Sequence[DataFeed],
    oev_feed_values: Sequence[DataFeedWithSignedData],
    dapp_id: int = None,
) -> Tuple[List[List[bytes]], List[str]]:
    """
    Build the OEV update payload for all feeds.

    Returns:
        (signed_data_array, simulate_calls): encoded signed data per feed, and
        the matching `simulateDappOevDataFeedUpdate` calls
    """
    dapp_id = dapp_id if dapp_id is not None else config.dapp_id
    signed_data_array = [
        encode_signed_data_for_oev_update(data_feed, oev_value)
        for data_feed, oev_value in zip(data_feeds, oev_feed_values)
    ]
    simulate_calls = [
        state.target_chain.encode_simulate_oev_update(dapp_id, signed_data)
        for signed_data in signed_data_array
    ]
    return signed_data_array, simulate_calls
