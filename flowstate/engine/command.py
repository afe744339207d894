"""
Graph commands.

A node never mutates state; it returns one of these commands and the
engine applies it. The set is closed: Traverse, Complete, Suspend, Error.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union
import uuid

from flowstate.engine.context import WorkflowContext
from flowstate.engine.errors import WorkflowError, as_workflow_error
from flowstate.engine.state import UNCHANGED


class GraphCommand:
    """Base class for commands returned by nodes."""

    __slots__ = ()

    context_update: Optional[WorkflowContext]

    def _check_context_update(self) -> None:
        if self.context_update is not None and not isinstance(self.context_update, WorkflowContext):
            raise TypeError(
                f"{type(self).__name__}.context_update must be a WorkflowContext, "
                f"got {type(self.context_update).__name__}"
            )


def _check_node_ref(command: GraphCommand, attr: str) -> None:
    value = getattr(command, attr)
    if value is not None and not isinstance(value, str):
        raise TypeError(
            f"{type(command).__name__}.{attr} must be a node id string, got {type(value).__name__}"
        )


@dataclass(frozen=True)
class Traverse(GraphCommand):
    """
    Move to another node.

    With ``target=None`` the graph router picks the next node from the
    current node's outgoing edges.
    """
    target: Optional[str] = None
    context_update: Optional[WorkflowContext] = None
    data: Any = UNCHANGED
    reason: str = ""

    def __post_init__(self):
        self._check_context_update()
        _check_node_ref(self, "target")


@dataclass(frozen=True)
class Complete(GraphCommand):
    """Finish the workflow with a result."""
    result: Any = None
    context_update: Optional[WorkflowContext] = None
    data: Any = UNCHANGED

    def __post_init__(self):
        self._check_context_update()


@dataclass(frozen=True)
class Suspend(GraphCommand):
    """Pause the workflow; it can be resumed from the returned state."""
    reason: str = ""
    context_update: Optional[WorkflowContext] = None
    suspension_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self._check_context_update()


@dataclass(frozen=True)
class Error(GraphCommand):
    """
    Report a failure.

    If ``fallback`` names a node in the graph, execution continues there
    instead of terminating.
    """
    error: Union[WorkflowError, BaseException, str]
    context_update: Optional[WorkflowContext] = None
    fallback: Optional[str] = None

    def __post_init__(self):
        self._check_context_update()
        _check_node_ref(self, "fallback")
        object.__setattr__(self, "error", as_workflow_error(self.error))
