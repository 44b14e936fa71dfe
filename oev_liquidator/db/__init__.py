"""
Storage Layer
=============

JSON snapshot files for the watched position sets.
"""

from .snapshot import load_all_positions, load_positions_to_watch, write_json

__all__ = ["load_all_positions", "load_positions_to_watch", "write_json"]
