"""
Workflow lifecycle monitoring.

A WorkflowMonitor receives events from the engine as a run progresses.
Every hook is a no-op by default, so subclasses override only what they
need. The engine guards each call: a hook that raises is logged and the
run continues.
"""

from typing import Optional

from flowstate.engine.errors import WorkflowError
from flowstate.engine.state import WorkflowState


class WorkflowMonitor:
    """
    Base monitor with no-op hooks.

    Usage:
        class Metrics(WorkflowMonitor):
            def on_node_completed(self, workflow_id, node_id, state, duration_ms):
                timings[node_id].append(duration_ms)

        engine = WorkflowEngine(graph, monitor=Metrics())
    """

    # Workflow events

    def on_workflow_started(self, workflow_id: str, workflow_name: str, state: WorkflowState) -> None:
        """Called once a new run has a valid entry point, before the first node."""

    def on_workflow_resumed(self, workflow_id: str, state: WorkflowState) -> None:
        """Called with the merged state before the suspended node runs again."""

    def on_workflow_completed(self, workflow_id: str, state: WorkflowState) -> None:
        pass

    def on_workflow_suspended(self, workflow_id: str, state: WorkflowState) -> None:
        pass

    def on_workflow_error(self, workflow_id: str, error: WorkflowError, state: Optional[WorkflowState]) -> None:
        """Called for every ERROR result, including failures before the first node."""

    # Node events

    def on_node_started(self, workflow_id: str, node_id: str, state: WorkflowState) -> None:
        pass

    def on_node_completed(self, workflow_id: str, node_id: str, state: WorkflowState, duration_ms: float) -> None:
        """Called when a node returns Traverse, Complete or Suspend."""

    def on_node_error(self, workflow_id: str, node_id: str, error: WorkflowError, state: WorkflowState) -> None:
        """Called when a node fails or its command cannot be applied."""

    def on_node_transition(
        self,
        workflow_id: str,
        edge_id: Optional[str],
        from_node: str,
        to_node: str,
        state: WorkflowState,
    ) -> None:
        """``edge_id`` is None for explicit targets and error fallbacks."""

    def on_warning(self, workflow_id: str, message: str, state: Optional[WorkflowState]) -> None:
        pass
