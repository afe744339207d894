"""
Engine package - Core workflow execution components.
"""

from flowstate.engine.context import ContextKey, WorkflowContext, SecurityContext
from flowstate.engine.merge import (
    ContextConflict,
    ContextMergeResult,
    ContextMergeStrategy,
    merge_contexts,
)
from flowstate.engine.state import WorkflowState, StateManager, UNCHANGED
from flowstate.engine.command import GraphCommand, Traverse, Complete, Suspend, Error
from flowstate.engine.node import Node, FunctionNode, node
from flowstate.engine.graph import Graph, WorkflowRoute, when_context, context_equals, negate
from flowstate.engine.executor import (
    ExecutionResult,
    ExecutionStatus,
    ExecutionStep,
    WorkflowEngine,
    execute_graph,
    run_workflow,
)
from flowstate.engine.monitor import WorkflowMonitor
from flowstate.engine.routing import (
    ConfidenceRouter,
    ContentRouter,
    Route,
    RoutingDecision,
    RoutingRule,
    RuleBasedContentRouter,
)
from flowstate.engine.fanout import FanOutExecutor, FanOutNode, fan_out

__all__ = [
    "ContextKey",
    "WorkflowContext",
    "SecurityContext",
    "ContextConflict",
    "ContextMergeResult",
    "ContextMergeStrategy",
    "merge_contexts",
    "WorkflowState",
    "StateManager",
    "UNCHANGED",
    "GraphCommand",
    "Traverse",
    "Complete",
    "Suspend",
    "Error",
    "Node",
    "FunctionNode",
    "node",
    "Graph",
    "WorkflowRoute",
    "when_context",
    "context_equals",
    "negate",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionStep",
    "WorkflowEngine",
    "execute_graph",
    "run_workflow",
    "WorkflowMonitor",
    "ConfidenceRouter",
    "ContentRouter",
    "Route",
    "RoutingDecision",
    "RoutingRule",
    "RuleBasedContentRouter",
    "FanOutExecutor",
    "FanOutNode",
    "fan_out",
]
