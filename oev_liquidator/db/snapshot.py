"""
Position Snapshot Files
=======================

JSON files that let the bot start without rescanning the whole chain:

- all-positions.json: {"allPositions": [...], "lastBlock": N}
  Seed of the "all" set and the block it was scanned up to.
- positions-to-watch.json: {"currentPositions": [...], "interestingPositions": [...]}
  Optional development override. When present and valid it replaces the
  filtered sets computed on start.

Both are written by scripts/prepare_positions.py.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from ..config import config
from ..models import FilteredPositions

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _read_json(path: PathLike) -> Optional[Any]:
    try:
        if os.path.exists(path):
            with open(path, 'r') as f:
                return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Could not load {path}: {e}")
    return None


def _is_address_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def load_all_positions(path: PathLike = None) -> Tuple[List[str], int]:
    """
    Load the seed of all known positions.

    Returns:
        (all_positions, last_block), or ([], 0) if the file is missing or invalid
    """
    path = path or config.all_positions_path
    data = _read_json(path)
    if data is None:
        return [], 0

    positions = data.get("allPositions") if isinstance(data, dict) else None
    last_block = data.get("lastBlock") if isinstance(data, dict) else None
    if not _is_address_list(positions) or not isinstance(last_block, int):
        logger.warning(f"Ignoring malformed positions seed {path}")
        return [], 0

    logger.info(f"Loaded {len(positions)} positions up to block {last_block} from {path}")
    return positions, last_block


def load_positions_to_watch(path: PathLike = None) -> Optional[FilteredPositions]:
    """
    Load the development override for current and interesting positions.

    Returns:
        FilteredPositions, or None if the file is missing or invalid
    """
    path = path or config.positions_to_watch_path
    data = _read_json(path)
    if not isinstance(data, dict):
        return None

    current = data.get("currentPositions")
    interesting = data.get("interestingPositions")
    if not _is_address_list(current) or not _is_address_list(interesting):
        logger.warning(f"Ignoring malformed positions to watch {path}")
        return None

    logger.info(f"Using positions to watch from {path}")
    return FilteredPositions(current_positions=current, interesting_positions=interesting)


def write_json(path: PathLike, data: Any):
    """Write pretty-printed JSON, replacing the file atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_file = path.with_name(path.name + '.tmp')
    with open(temp_file, 'w') as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    os.replace(temp_file, path)
