"""
FlowState - A graph-structured workflow engine.

Run nodes over an immutable, versioned state with typed context,
predicate routing, suspend/resume, confidence routing and fan-out.
"""

from flowstate.engine import (
    Complete,
    ContextKey,
    ContextMergeStrategy,
    Error,
    ExecutionResult,
    ExecutionStatus,
    Graph,
    GraphCommand,
    Suspend,
    Traverse,
    WorkflowContext,
    WorkflowEngine,
    WorkflowMonitor,
    WorkflowState,
    node,
)
from flowstate.registry import WorkflowRegistry

__version__ = "1.0.0"

__all__ = [
    "Complete",
    "ContextKey",
    "ContextMergeStrategy",
    "Error",
    "ExecutionResult",
    "ExecutionStatus",
    "Graph",
    "GraphCommand",
    "Suspend",
    "Traverse",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowMonitor",
    "WorkflowRegistry",
    "WorkflowState",
    "node",
]
