"""
Node Definition for the workflow engine.

A node reads the current WorkflowState and returns a GraphCommand. Nodes
may be plain functions or coroutine functions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import inspect

from flowstate.engine.command import GraphCommand
from flowstate.engine.state import WorkflowState


NodeResult = Union[GraphCommand, Awaitable[GraphCommand]]


class Node(ABC):
    """
    A processing step in a workflow graph.

    Subclasses provide ``node_id`` and implement ``process``. ``process``
    may be declared ``async``; such nodes need the engine's async entry
    points.
    """

    node_id: str
    name: str = ""
    description: str = ""
    is_entry_point: bool = False

    @abstractmethod
    def process(self, state: WorkflowState) -> NodeResult:
        """Process the state and return the next command."""

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.process)

    @property
    def display_name(self) -> str:
        return self.name or self.node_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "name": self.display_name,
            "description": self.description,
            "entry_point": self.is_entry_point,
            "async": self.is_async,
        }


@dataclass
class FunctionNode(Node):
    """
    A node backed by a handler function.

    Attributes:
        node_id: Unique identifier within a graph
        handler: ``handler(state) -> GraphCommand`` (sync or async)
        name: Human-readable name
        description: Human-readable description
        is_entry_point: Whether execution may start here
        metadata: Additional node metadata
    """

    node_id: str
    handler: Callable[[WorkflowState], NodeResult]
    name: str = ""
    description: str = ""
    is_entry_point: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate the node after initialization."""
        if not self.node_id:
            raise ValueError("Node id cannot be empty")
        if not callable(self.handler):
            raise ValueError(f"Handler for node '{self.node_id}' must be callable")

    @property
    def is_async(self) -> bool:
        """Check if the handler is an async function."""
        return inspect.iscoroutinefunction(self.handler)

    def process(self, state: WorkflowState) -> NodeResult:
        return self.handler(state)


def create_node_from_function(
    func: Callable,
    node_id: Optional[str] = None,
    name: str = "",
    description: str = "",
    entry: bool = False,
) -> FunctionNode:
    """
    Create a FunctionNode from a function.

    Args:
        func: The handler function
        node_id: Node id (defaults to function name)
        name: Human-readable name
        description: Description (defaults to the docstring)
        entry: Mark the node as an entry point

    Returns:
        A FunctionNode instance
    """
    return FunctionNode(
        node_id=node_id or func.__name__,
        handler=func,
        name=name,
        description=description or (func.__doc__ or "").strip(),
        is_entry_point=entry,
    )


def node(
    node_id: Optional[str] = None,
    name: str = "",
    description: str = "",
    entry: bool = False,
) -> Callable[[Callable], FunctionNode]:
    """
    Decorator turning a function into a FunctionNode.

    Usage:
        @node("validate", entry=True)
        def validate(state: WorkflowState) -> GraphCommand:
            return Traverse()
    """
    def decorator(func: Callable) -> FunctionNode:
        return create_node_from_function(func, node_id, name, description, entry)

    return decorator
