"""
Graph Definition for the workflow engine.

A Graph holds nodes and the routes (edges) between them, and decides
which edge to follow after a node asks to traverse without naming a
target.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

from flowstate.engine.context import ContextKey
from flowstate.engine.errors import NoRouteFoundError, StructuralError
from flowstate.engine.node import Node
from flowstate.engine.state import WorkflowState


logger = logging.getLogger(__name__)

EdgePredicate = Callable[[Any, WorkflowState], bool]


@dataclass
class WorkflowRoute:
    """
    A directed edge between two nodes.

    Attributes:
        edge_id: Unique identifier (defaults to "source->target")
        source: Source node id
        target: Target node id; may equal source for retry loops
        predicate: ``predicate(payload, state) -> bool``; None always matches
        priority: Higher values are evaluated first
        is_default: Used only when no other edge matches
        description: Human-readable description
    """
    source: str
    target: str
    predicate: Optional[EdgePredicate] = None
    priority: int = 0
    is_default: bool = False
    description: str = ""
    edge_id: str = ""

    def __post_init__(self):
        if not self.source or not self.target:
            raise ValueError("Route source and target cannot be empty")
        if not self.edge_id:
            self.edge_id = f"{self.source}->{self.target}"

    @property
    def is_conditional(self) -> bool:
        return self.predicate is not None

    def matches(self, state: WorkflowState) -> bool:
        """Evaluate the predicate; a predicate that raises does not match."""
        if self.predicate is None:
            return True
        try:
            return bool(self.predicate(state.data, state))
        except Exception as e:
            logger.debug(f"Predicate on edge '{self.edge_id}' raised {e!r}; treating as no match")
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "source": self.source,
            "target": self.target,
            "priority": self.priority,
            "default": self.is_default,
            "conditional": self.is_conditional,
            "description": self.description,
        }


@dataclass
class Graph:
    """
    A workflow graph consisting of nodes and routes.

    Attributes:
        name: Human-readable name
        description: Human-readable description
        nodes: Dict of node_id -> Node
        edges: Routes in declaration order
        default_entry_point: Node to start from when several are flagged
        metadata: Additional graph metadata

    Usage:
        graph = (
            Graph("orders")
            .add_node(validate)
            .add_node(ship)
            .add_edge("validate", "ship")
        )
    """

    name: str = "Unnamed Workflow"
    description: str = ""
    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: List[WorkflowRoute] = field(default_factory=list)
    default_entry_point: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_node(self, node: Node) -> "Graph":
        """
        Add a node to the graph.

        Raises:
            StructuralError: If a node with the same id already exists
        """
        if node.node_id in self.nodes:
            raise StructuralError([f"Node '{node.node_id}' already exists in the graph"])
        self.nodes[node.node_id] = node
        return self

    def add_nodes(self, *nodes: Node) -> "Graph":
        for n in nodes:
            self.add_node(n)
        return self

    def add_route(self, route: WorkflowRoute) -> "Graph":
        if any(e.edge_id == route.edge_id for e in self.edges):
            raise StructuralError([f"Edge '{route.edge_id}' already exists in the graph"])
        self.edges.append(route)
        return self

    def add_edge(
        self,
        source: str,
        target: str,
        predicate: Optional[EdgePredicate] = None,
        priority: int = 0,
        is_default: bool = False,
        description: str = "",
        edge_id: Optional[str] = None,
    ) -> "Graph":
        """
        Add an edge from source to target.

        References are checked by ``validate()``, so edges may be declared
        before their nodes. Without an explicit ``edge_id`` the id is
        "source->target"; parallel edges get "source->target#2", "#3", ...

        Returns:
            Self for chaining

        Raises:
            StructuralError: If an explicit ``edge_id`` is already taken
        """
        if not edge_id:
            edge_id = base = f"{source}->{target}"
            taken = {e.edge_id for e in self.edges}
            suffix = 2
            while edge_id in taken:
                edge_id = f"{base}#{suffix}"
                suffix += 1
        return self.add_route(WorkflowRoute(
            source=source,
            target=target,
            predicate=predicate,
            priority=priority,
            is_default=is_default,
            description=description,
            edge_id=edge_id,
        ))

    def set_entry_point(self, node_id: str) -> "Graph":
        """Set the default entry point of the graph."""
        self.default_entry_point = node_id
        return self

    @property
    def entry_points(self) -> List[str]:
        """Nodes flagged as entry points, plus the default entry point."""
        entries = [nid for nid, n in self.nodes.items() if n.is_entry_point]
        if self.default_entry_point and self.default_entry_point not in entries:
            entries.append(self.default_entry_point)
        return entries

    def resolve_entry_point(self, requested: Optional[str] = None) -> str:
        """
        Pick the node a run starts from.

        An explicit request wins, then the default entry point, then the
        single flagged entry node.
        """
        if requested:
            if requested not in self.nodes:
                raise StructuralError([f"Entry point '{requested}' not found in nodes"])
            return requested
        if self.default_entry_point:
            return self.default_entry_point
        entries = self.entry_points
        if len(entries) == 1:
            return entries[0]
        raise StructuralError([f"Cannot choose an entry point among {entries}"])

    def get_node(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def edges_from(self, node_id: str) -> List[WorkflowRoute]:
        """Outgoing edges in evaluation order (priority desc, declaration order, defaults last)."""
        outgoing = [e for e in self.edges if e.source == node_id]
        ranked = sorted((e for e in outgoing if not e.is_default), key=lambda e: -e.priority)
        return ranked + [e for e in outgoing if e.is_default]

    def route(self, from_node: str, state: WorkflowState) -> WorkflowRoute:
        """
        Select the edge to follow from ``from_node``.

        Non-default edges are tried by descending priority; ties keep
        declaration order. The first match wins. A default edge is used
        only when nothing else matched.

        Raises:
            NoRouteFoundError: If no edge matches and there is no default
        """
        default: Optional[WorkflowRoute] = None
        for edge in self.edges_from(from_node):
            if edge.is_default:
                default = default or edge
                continue
            if edge.matches(state):
                logger.debug(f"Route from '{from_node}': {edge.edge_id}")
                return edge
        if default is not None:
            logger.debug(f"Route from '{from_node}': default {default.edge_id}")
            return default
        raise NoRouteFoundError(from_node)

    def validate(self) -> List[str]:
        """
        Validate the graph structure.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # Must have at least one node
        if not self.nodes:
            errors.append("Graph must have at least one node")
            return errors

        flagged = [nid for nid, n in self.nodes.items() if n.is_entry_point]
        if self.default_entry_point and self.default_entry_point not in self.nodes:
            errors.append(f"Default entry point '{self.default_entry_point}' not found in nodes")
        if not flagged and not self.default_entry_point:
            errors.append("Graph must have at least one entry point")
        if len(flagged) > 1 and not self.default_entry_point:
            errors.append(
                f"Multiple entry points {flagged} require a default entry point"
            )

        seen_defaults: Dict[str, str] = {}
        for edge in self.edges:
            if edge.source not in self.nodes:
                errors.append(f"Edge '{edge.edge_id}' source '{edge.source}' not found in nodes")
            if edge.target not in self.nodes:
                errors.append(f"Edge '{edge.edge_id}' target '{edge.target}' not found in nodes")
            if edge.is_default:
                if edge.source in seen_defaults:
                    errors.append(
                        f"Node '{edge.source}' has more than one default edge "
                        f"('{seen_defaults[edge.source]}', '{edge.edge_id}')"
                    )
                else:
                    seen_defaults[edge.source] = edge.edge_id

        return errors

    def ensure_valid(self) -> "Graph":
        """Raise StructuralError if ``validate()`` reports problems."""
        errors = self.validate()
        if errors:
            raise StructuralError(errors)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph structure to a dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "nodes": {nid: n.to_dict() for nid, n in self.nodes.items()},
            "edges": [e.to_dict() for e in self.edges],
            "entry_points": self.entry_points,
            "default_entry_point": self.default_entry_point,
            "metadata": self.metadata,
        }

    def __repr__(self) -> str:
        return (
            f"Graph(name='{self.name}', nodes={list(self.nodes.keys())}, "
            f"entry={self.entry_points})"
        )


# Predicate helpers

def when_context(key: ContextKey, test: Callable[[Any], bool]) -> EdgePredicate:
    """Match when the context holds ``key`` and ``test(value)`` is true."""
    def predicate(payload: Any, state: WorkflowState) -> bool:
        return state.context.contains(key) and bool(test(state.context[key]))
    predicate.__name__ = f"when_context({key.name})"
    return predicate


def context_equals(key: ContextKey, expected: Any) -> EdgePredicate:
    """Match when the context value for ``key`` equals ``expected``."""
    def predicate(payload: Any, state: WorkflowState) -> bool:
        return state.context.get(key) == expected
    predicate.__name__ = f"context_equals({key.name})"
    return predicate


def negate(inner: EdgePredicate) -> EdgePredicate:
    def predicate(payload: Any, state: WorkflowState) -> bool:
        return not inner(payload, state)
    return predicate
