"""
Process State
=============

Single process-wide snapshot shared by all loops.

The snapshot is a frozen dataclass. Loops read it with `store.get()` and
replace it with `store.update(fn)`, where `fn` returns a new snapshot built
from the previous one (usually via `dataclasses.replace`). Updates are
serialized by a lock, readers never block.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..models import Api3Feed, Beacon, DataFeed

logger = logging.getLogger(__name__)


class StateNotInitializedError(RuntimeError):
    """Raised when the state is read before `initialize`."""


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ProcessState:
    """
    Immutable snapshot of everything the bot knows.

    Connectors are the chain and HTTP clients, shared by reference.
    """
    target_chain: Any
    oev_network: Any
    signed_api: Any
    api3_feeds: Tuple[Api3Feed, ...] = ()

    # Position sets (interesting ⊆ current ⊆ all)
    all_positions: Tuple[str, ...] = ()
    current_positions: Tuple[str, ...] = ()
    interesting_positions: Tuple[str, ...] = ()
    target_chain_last_block: int = 0

    # Single-flight guard for liquidations
    currently_liquidated_positions: Tuple[str, ...] = ()

    # Feed caches
    dapi_name_hash_to_data_feed_id: Mapping[str, str] = field(default_factory=dict)
    data_feed_id_to_beacons: Mapping[str, Tuple[Beacon, ...]] = field(default_factory=dict)
    oev_data_feeds: Mapping[str, DataFeed] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("all_positions", "current_positions", "interesting_positions",
                     "currently_liquidated_positions", "api3_feeds"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        for name in ("dapi_name_hash_to_data_feed_id", "data_feed_id_to_beacons", "oev_data_feeds"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def with_mapping_updates(self, name: str, updates: Dict[str, Any]) -> "ProcessState":
        """Return a copy with `updates` merged into the mapping field `name`."""
        merged = dict(getattr(self, name))
        merged.update(updates)
        return replace(self, **{name: merged})


class StateStore:
    """
    Holder of the current ProcessState.

    `update` is the only way to change state: it takes the latest snapshot,
    applies a pure transform and publishes the result atomically.
    """

    def __init__(self):
        self._state: Optional[ProcessState] = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._state is not None

    def initialize(self, state: ProcessState) -> ProcessState:
        with self._lock:
            self._state = state
        logger.debug("Process state initialized")
        return state

    def get(self) -> ProcessState:
        state = self._state
        if state is None:
            raise StateNotInitializedError("Process state not initialized")
        return state

    def update(self, fn: Callable[[ProcessState], ProcessState]) -> ProcessState:
        with self._lock:
            if self._state is None:
                raise StateNotInitializedError("Process state not initialized")
            new_state = fn(self._state)
            if not isinstance(new_state, ProcessState):
                raise TypeError(f"State update must return ProcessState, got {type(new_state).__name__}")
            self._state = new_state
            return new_state

    def set_fields(self, **changes) -> ProcessState:
        """Shorthand for `update(lambda s: replace(s, **changes))`."""
        return self.update(lambda state: replace(state, **changes))
