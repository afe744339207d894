"""
Tests for WorkflowState and StateManager.
"""

import pytest
from pydantic import ValidationError

from flowstate.engine.context import ContextKey, WorkflowContext
from flowstate.engine.keys import LAST_EDGE_ID
from flowstate.engine.state import UNCHANGED, StateManager, WorkflowState


NOTE = ContextKey.string("note")


# ============================================================
# State Tests
# ============================================================

class TestWorkflowState:
    """Tests for WorkflowState."""

    def test_create_state(self):
        """Test creating a version-1 state."""
        state = WorkflowState.create({"order": 1}, node_id="start")

        assert state.version == 1
        assert state.data == {"order": 1}
        assert state.current_node_id == "start"
        assert state.visited_nodes == ("start",)
        assert len(state.context) == 0
        assert state.workflow_id

    def test_state_is_frozen(self):
        """Test that fields cannot be assigned."""
        state = WorkflowState.create()
        with pytest.raises(ValidationError):
            state.version = 5

    def test_with_data_bumps_version(self):
        """Test replacing the payload returns a new version."""
        state1 = WorkflowState.create({"a": 1})
        state2 = state1.with_data({"a": 2})

        assert state1.data == {"a": 1}
        assert state1.version == 1
        assert state2.data == {"a": 2}
        assert state2.version == 2
        assert state2.workflow_id == state1.workflow_id

    def test_set_context_bumps_version(self):
        """Test context writes produce new states."""
        state1 = WorkflowState.create()
        state2 = state1.set_context(NOTE, "hi")

        assert state1.get(NOTE) is None
        assert state2.get(NOTE) == "hi"
        assert state2.version == 2

    def test_apply_is_one_version_step(self):
        """Test applying data and context together bumps the version once."""
        state = WorkflowState.create({"a": 1}).apply(WorkflowContext.of(NOTE, "x"), {"a": 2})

        assert state.version == 2
        assert state.data == {"a": 2}
        assert state.get(NOTE) == "x"

    def test_apply_nothing_keeps_state(self):
        """Test an empty apply returns the same state."""
        state = WorkflowState.create({"a": 1})
        assert state.apply(None, UNCHANGED) is state

    def test_apply_none_payload(self):
        """Test a None payload can be set explicitly."""
        state = WorkflowState.create({"a": 1}).apply(data=None)
        assert state.data is None
        assert state.version == 2

    def test_advance(self):
        """Test advancing moves to the target and records the edge."""
        state = WorkflowState.create("x", node_id="a")
        moved = state.advance("b", WorkflowContext.of(NOTE, "n"), "y", edge_id="a->b")

        assert moved.current_node_id == "b"
        assert moved.visited_nodes == ("a", "b")
        assert moved.version == 2
        assert moved.data == "y"
        assert moved.get(NOTE) == "n"
        assert moved.get(LAST_EDGE_ID) == "a->b"
        assert moved.previous_node_id == "a"
        assert state.current_node_id == "a"

    def test_finish_clears_current_node(self):
        """Test finishing clears the current node."""
        state = WorkflowState.create(node_id="a").finish()
        assert state.current_node_id is None
        assert state.version == 2

    def test_cycle_detection(self):
        """Test the visited path and cycle detection."""
        state = WorkflowState.create(node_id="a").move_to("b")
        assert not state.has_cycle()
        assert state.has_visited("b")

        state = state.move_to("a")
        assert state.has_cycle()
        assert state.depth == 3
        assert state.path_string() == "a -> b -> a"

    def test_to_from_dict(self):
        """Test serialization and deserialization."""
        state = WorkflowState.create({"test": 123}, WorkflowContext.of(NOTE, "n"), node_id="a")
        state_dict = state.to_dict()

        assert state_dict["data"]["test"] == 123
        assert state_dict["context"] == {"note": "n"}

        restored = WorkflowState.from_dict(state_dict, [NOTE])
        assert restored.workflow_id == state.workflow_id
        assert restored.get(NOTE) == "n"
        assert restored.current_node_id == "a"
        assert restored.version == state.version
        assert restored.created_at == state.created_at


class TestStateManager:
    """Tests for StateManager."""

    def test_initialize(self):
        """Test state manager initialization."""
        manager = StateManager()
        state = manager.initialize(WorkflowState.create(node_id="a"))

        assert manager.current_state is state
        assert manager.workflow_id == state.workflow_id
        assert manager.history == []

    def test_update_records_history(self):
        """Test that updates record snapshots."""
        manager = StateManager()
        state = manager.initialize(WorkflowState.create(node_id="a"))
        manager.update(state.set_context(NOTE, "x"), "a")

        history = manager.get_history()
        assert len(history) == 1
        assert history[0]["node"] == "a"
        assert history[0]["version"] == 2
        assert history[0]["context_keys"] == ["note"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
