"""
Tests for the workflow registry and the document review sample workflow.
"""

import pytest

from flowstate.engine.command import Complete
from flowstate.engine.errors import StructuralError
from flowstate.engine.executor import ExecutionStatus, WorkflowEngine
from flowstate.engine.graph import Graph
from flowstate.engine.node import FunctionNode
from flowstate.registry import WorkflowRegistry
from flowstate.workflows.document_review import (
    APPROVED,
    ATTEMPTS,
    SCORE,
    create_document_review_workflow,
    find_issues,
    register_document_review_workflow,
    reviewer_decision,
    score_text,
)


def tiny_graph(label="tiny"):
    return Graph(name=label).add_node(FunctionNode("only", lambda s: Complete(label), is_entry_point=True))


# ============================================================
# Registry Tests
# ============================================================

class TestWorkflowRegistry:
    """Tests for WorkflowRegistry."""

    def test_register_decorator(self):
        """Test registering a factory with the decorator."""
        registry = WorkflowRegistry()

        @registry.register("tiny", description="A tiny workflow")
        def build_tiny():
            return tiny_graph()

        assert "tiny" in registry
        assert registry.get("tiny").description == "A tiny workflow"
        assert build_tiny().name == "tiny"

    def test_add_and_create(self):
        """Test adding a factory and creating graphs with arguments."""
        registry = WorkflowRegistry()
        registry.add(tiny_graph)

        graph = registry.create("tiny_graph", label="custom")
        assert graph.name == "custom"
        assert WorkflowEngine(graph).start().output == "custom"

    def test_create_unknown(self):
        """Test creating an unregistered workflow."""
        with pytest.raises(KeyError, match="not found"):
            WorkflowRegistry().create("missing")

    def test_factory_must_return_graph(self):
        """Test factories returning something else are rejected."""
        registry = WorkflowRegistry()
        registry.add(lambda: "not a graph", name="bad")

        with pytest.raises(StructuralError):
            registry.create("bad")

    def test_list_remove_and_iterate(self):
        """Test listing, removing and iterating."""
        registry = WorkflowRegistry()
        registry.add(tiny_graph, name="a")
        registry.add(tiny_graph, name="b")

        assert len(registry) == 2
        assert [w["name"] for w in registry.list_workflows()] == ["a", "b"]
        assert [d.name for d in registry] == ["a", "b"]

        assert registry.remove("a")
        assert not registry.remove("a")
        assert not registry.has("a")

    def test_registries_are_independent(self):
        """Test two registries do not share entries."""
        first = WorkflowRegistry()
        second = WorkflowRegistry()
        first.add(tiny_graph)

        assert "tiny_graph" in first
        assert "tiny_graph" not in second


# ============================================================
# Document Review Workflow Tests
# ============================================================

class TestDocumentReview:
    """Tests for the document review sample workflow."""

    MESSY = "hello  world. TODO fix this"

    def test_text_checks(self):
        """Test issue detection and scoring."""
        assert find_issues(self.MESSY) == ["todo", "whitespace", "capitalization", "punctuation"]
        assert score_text(self.MESSY) == 0.0
        assert score_text("All good.") == 10.0
        assert score_text("") == 0.0

    def test_workflow_structure(self):
        """Test the workflow graph is valid."""
        graph = create_document_review_workflow()

        assert graph.validate() == []
        assert set(graph.nodes) == {"draft", "revise", "approve", "publish", "reject"}
        assert any(e.source == "revise" and e.target == "revise" for e in graph.edges)

    def test_revises_then_suspends(self):
        """Test the retry loop runs until quality is met, then waits for approval."""
        result = WorkflowEngine(create_document_review_workflow()).start(self.MESSY)

        assert result.status == ExecutionStatus.SUSPENDED
        assert result.final_state.current_node_id == "approve"
        assert result.final_state.get(ATTEMPTS) == 3
        assert result.final_state.get(SCORE) == 7.5
        assert result.final_state.data["text"] == "Hello world. Fix this"
        assert [s.node for s in result.execution_log] == ["draft", "revise", "revise", "revise", "approve"]

    def test_approved_document_published(self):
        """Test resuming with approval publishes the document."""
        engine = WorkflowEngine(create_document_review_workflow())
        suspended = engine.start({"text": self.MESSY})

        result = engine.resume(suspended.final_state, reviewer_decision(True, "dana"))

        assert result.is_completed
        assert result.output["status"] == "published"
        assert result.output["reviewer"] == "dana"
        assert result.output["fixes"] == ["todo", "whitespace", "capitalization"]

    def test_declined_document_rejected(self):
        """Test resuming with a decline rejects the document."""
        engine = WorkflowEngine(create_document_review_workflow())
        suspended = engine.start(self.MESSY)

        result = engine.resume(suspended.final_state, reviewer_decision(False, "dana"))

        assert result.output["status"] == "rejected"
        assert result.output["reason"] == "declined by reviewer"
        assert result.final_state.get(APPROVED) is False

    def test_out_of_attempts(self):
        """Test the default edge rejects once attempts run out."""
        graph = create_document_review_workflow(max_attempts=1)
        result = WorkflowEngine(graph).start(self.MESSY)

        assert result.is_completed
        assert result.output["status"] == "rejected"
        assert "after 1 attempt" in result.output["reason"]

    def test_clean_document(self):
        """Test a clean document needs a single pass."""
        result = WorkflowEngine(create_document_review_workflow()).start("All good.")

        assert result.is_suspended
        assert result.final_state.get(ATTEMPTS) == 1

    def test_registered_in_registry(self):
        """Test registering the sample workflow by name."""
        registry = register_document_review_workflow(WorkflowRegistry())

        assert "document-review" in registry
        graph = registry.create("document-review", quality_threshold=10.0, max_attempts=10)
        result = WorkflowEngine(graph).start(self.MESSY)
        assert result.final_state.get(SCORE) == 10.0

    @pytest.mark.asyncio
    async def test_async_round_trip(self):
        """Test the workflow under the async entry points."""
        engine = WorkflowEngine(create_document_review_workflow())
        suspended = await engine.astart(self.MESSY)
        result = await engine.aresume(suspended.final_state, reviewer_decision(True, "lee"))

        assert result.output["status"] == "published"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
