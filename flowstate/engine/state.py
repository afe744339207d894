"""
State Management for the workflow engine.

WorkflowState is immutable: every mutator returns a new instance with the
version bumped, so a state handed to a node (or persisted by a caller)
never changes underneath it.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, NewType, Optional, Tuple
import uuid

from pydantic import BaseModel, ConfigDict, Field

from flowstate.engine.context import ContextKey, WorkflowContext
from flowstate.engine.keys import LAST_EDGE_ID


NodeId = NewType("NodeId", str)
EdgeId = NewType("EdgeId", str)
WorkflowId = NewType("WorkflowId", str)


def new_workflow_id() -> WorkflowId:
    return WorkflowId(str(uuid.uuid4()))


class _Unchanged:
    """Marker for 'keep the current payload'."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCHANGED"

    def __bool__(self) -> bool:
        return False


UNCHANGED: Any = _Unchanged()


class StateSnapshot(BaseModel):
    """A snapshot of state after a node ran."""

    timestamp: datetime = Field(default_factory=datetime.now)
    node_id: Optional[str] = None
    version: int
    context_keys: List[str] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """
    The state that flows through a workflow.

    Attributes:
        workflow_id: Identity of the workflow run
        data: Caller-defined payload
        context: Typed context store
        current_node_id: Node to execute next; None once completed
        version: Starts at 1, incremented by every mutator
        visited_nodes: Path of node ids taken so far
        created_at: When the run started
        last_modified: When this version was produced
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    workflow_id: str = Field(default_factory=new_workflow_id)
    data: Any = None
    context: WorkflowContext = Field(default_factory=WorkflowContext.empty)
    current_node_id: Optional[str] = None
    version: int = 1
    visited_nodes: Tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=datetime.now)
    last_modified: datetime = Field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        data: Any = None,
        context: Optional[WorkflowContext] = None,
        node_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
    ) -> "WorkflowState":
        """Create a version-1 state, optionally positioned on a node."""
        now = datetime.now()
        return cls(
            workflow_id=workflow_id or new_workflow_id(),
            data=data,
            context=context if context is not None else WorkflowContext.empty(),
            current_node_id=node_id,
            visited_nodes=(node_id,) if node_id else (),
            created_at=now,
            last_modified=now,
        )

    def _next(self, **changes: Any) -> "WorkflowState":
        changes["version"] = self.version + 1
        changes["last_modified"] = datetime.now()
        return self.model_copy(update=changes)

    # Reads

    def get(self, key: ContextKey, default: Any = None) -> Any:
        """Get a context value."""
        return self.context.get(key, default)

    def has_visited(self, node_id: str) -> bool:
        return node_id in self.visited_nodes

    def has_cycle(self) -> bool:
        """True when some node appears more than once on the path."""
        return len(set(self.visited_nodes)) < len(self.visited_nodes)

    @property
    def depth(self) -> int:
        return len(self.visited_nodes)

    @property
    def previous_node_id(self) -> Optional[str]:
        return self.visited_nodes[-2] if len(self.visited_nodes) > 1 else None

    def path_string(self) -> str:
        return " -> ".join(self.visited_nodes)

    # Mutators

    def with_data(self, data: Any) -> "WorkflowState":
        """Replace the payload."""
        return self._next(data=data)

    def with_context(self, context: WorkflowContext) -> "WorkflowState":
        """Replace the whole context."""
        return self._next(context=context)

    def set_context(self, key: ContextKey, value: Any) -> "WorkflowState":
        return self._next(context=self.context.set(key, value))

    def apply(
        self,
        context_update: Optional[WorkflowContext] = None,
        data: Any = UNCHANGED,
    ) -> "WorkflowState":
        """Merge a context update and/or replace the payload as one version step."""
        changes: Dict[str, Any] = {}
        if context_update:
            changes["context"] = self.context.merge(context_update)
        if data is not UNCHANGED:
            changes["data"] = data
        if not changes:
            return self
        return self._next(**changes)

    def move_to(self, node_id: str) -> "WorkflowState":
        return self._next(
            current_node_id=node_id,
            visited_nodes=self.visited_nodes + (node_id,),
        )

    def advance(
        self,
        target: str,
        context_update: Optional[WorkflowContext] = None,
        data: Any = UNCHANGED,
        edge_id: Optional[str] = None,
    ) -> "WorkflowState":
        """Apply a node's updates and move to ``target`` as a single version step."""
        context = self.context.merge(context_update)
        if edge_id:
            context = context.set(LAST_EDGE_ID, edge_id)
        return self._next(
            context=context,
            data=self.data if data is UNCHANGED else data,
            current_node_id=target,
            visited_nodes=self.visited_nodes + (target,),
        )

    def finish(
        self,
        context_update: Optional[WorkflowContext] = None,
        data: Any = UNCHANGED,
    ) -> "WorkflowState":
        """Apply final updates and clear the current node."""
        return self._next(
            context=self.context.merge(context_update),
            data=self.data if data is UNCHANGED else data,
            current_node_id=None,
        )

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Convert state to a plain dictionary."""
        return {
            "workflow_id": self.workflow_id,
            "data": self.data,
            "context": self.context.to_dict(),
            "current_node_id": self.current_node_id,
            "version": self.version,
            "visited_nodes": list(self.visited_nodes),
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], keys: Iterable[ContextKey] = ()) -> "WorkflowState":
        """
        Rebuild a state from ``to_dict()`` output.

        Context values are restored only for names listed in ``keys``.
        """
        return cls(
            workflow_id=data["workflow_id"],
            data=data.get("data"),
            context=WorkflowContext.from_dict(data.get("context", {}), keys),
            current_node_id=data.get("current_node_id"),
            version=data.get("version", 1),
            visited_nodes=tuple(data.get("visited_nodes", ())),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_modified=datetime.fromisoformat(data["last_modified"]),
        )


class StateManager:
    """
    Tracks state history for a single start/resume call.

    The engine creates one per call and drops it when the call returns.
    """

    def __init__(self, workflow_id: Optional[str] = None):
        self.workflow_id = workflow_id
        self.history: List[StateSnapshot] = []
        self._current_state: Optional[WorkflowState] = None

    @property
    def current_state(self) -> Optional[WorkflowState]:
        """Get the current state."""
        return self._current_state

    def initialize(self, state: WorkflowState) -> WorkflowState:
        self.workflow_id = state.workflow_id
        self._current_state = state
        return state

    def update(self, new_state: WorkflowState, node_id: Optional[str]) -> WorkflowState:
        """Update the current state and record a snapshot."""
        self.history.append(StateSnapshot(
            node_id=node_id,
            version=new_state.version,
            context_keys=sorted(new_state.context.key_names()),
        ))
        self._current_state = new_state
        return new_state

    def get_history(self) -> List[Dict[str, Any]]:
        """Get the state history as a list of dictionaries."""
        return [
            {
                "timestamp": s.timestamp.isoformat(),
                "node": s.node_id,
                "version": s.version,
                "context_keys": s.context_keys,
            }
            for s in self.history
        ]
