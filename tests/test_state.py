"""Tests for the process state store."""

from dataclasses import FrozenInstanceError, replace

import pytest

from oev_liquidator.core.state import ProcessState, StateNotInitializedError, StateStore


class TestStateStore:
    """Tests for StateStore."""

    def test_get_before_initialize(self):
        store = StateStore()
        assert not store.initialized
        with pytest.raises(StateNotInitializedError):
            store.get()

    def test_update_before_initialize(self):
        with pytest.raises(StateNotInitializedError):
            StateStore().update(lambda s: s)

    def test_update_replaces_snapshot(self, store):
        before = store.get()

        after = store.update(lambda s: replace(s, all_positions=["a", "b"]))

        assert store.initialized
        assert store.get() is after
        assert after.all_positions == ("a", "b")
        assert before.all_positions == ()

    def test_update_must_return_state(self, store):
        before = store.get()
        with pytest.raises(TypeError):
            store.update(lambda s: None)
        assert store.get() is before

    def test_set_fields(self, store):
        store.set_fields(current_positions=["a"], target_chain_last_block=42)
        assert store.get().current_positions == ("a",)
        assert store.get().target_chain_last_block == 42


class TestProcessState:
    """Tests for ProcessState snapshots."""

    def test_frozen(self, state):
        with pytest.raises(FrozenInstanceError):
            state.all_positions = ("a",)

    def test_mappings_are_read_only(self, state):
        with pytest.raises(TypeError):
            state.oev_data_feeds["x"] = "y"

    def test_mapping_updates_do_not_touch_original(self, state):
        updated = state.with_mapping_updates("dapi_name_hash_to_data_feed_id", {"0x01": "0x02"})

        assert updated.dapi_name_hash_to_data_feed_id == {"0x01": "0x02"}
        assert dict(state.dapi_name_hash_to_data_feed_id) == {}

    def test_connectors_shared_by_reference(self, state, target_chain):
        assert replace(state, all_positions=["a"]).target_chain is target_chain

    def test_defaults(self):
        state = ProcessState(target_chain=None, oev_network=None, signed_api=None)
        assert state.interesting_positions == ()
        assert state.currently_liquidated_positions == ()
        assert state.target_chain_last_block == 0
