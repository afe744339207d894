"""
Workflow Registry.

Holds named workflow factories so applications can build graphs by name.
A registry is an ordinary object: create one and pass it where it is
needed.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional
import functools
import logging

from flowstate.engine.errors import StructuralError
from flowstate.engine.graph import Graph


logger = logging.getLogger(__name__)

GraphFactory = Callable[..., Graph]


@dataclass
class WorkflowDefinition:
    """
    A registered workflow factory.

    Attributes:
        name: Unique identifier for the workflow
        factory: Callable returning a new Graph
        description: Human-readable description
    """
    name: str
    factory: GraphFactory
    description: str = ""

    def create(self, **kwargs: Any) -> Graph:
        graph = self.factory(**kwargs)
        if not isinstance(graph, Graph):
            raise StructuralError(
                [f"Factory for workflow '{self.name}' returned {type(graph).__name__}, expected Graph"]
            )
        return graph

    def to_dict(self) -> Dict[str, Any]:
        """Serialize workflow metadata."""
        return {
            "name": self.name,
            "description": self.description,
            "factory": getattr(self.factory, "__name__", repr(self.factory)),
        }


class WorkflowRegistry:
    """
    Registry of workflow factories.

    Usage:
        registry = WorkflowRegistry()

        @registry.register("orders")
        def build_orders() -> Graph:
            return Graph("orders")...

        graph = registry.create("orders")
    """

    def __init__(self):
        self._workflows: Dict[str, WorkflowDefinition] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: str = "",
    ) -> Callable[[GraphFactory], GraphFactory]:
        """
        Decorator to register a factory function.

        Args:
            name: Workflow name (defaults to function name)
            description: Description (defaults to docstring)

        Returns:
            Decorator function
        """
        def decorator(func: GraphFactory) -> GraphFactory:
            self.add(func, name=name, description=description)

            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                return func(*args, **kwargs)

            return wrapper

        return decorator

    def add(
        self,
        factory: GraphFactory,
        name: Optional[str] = None,
        description: str = "",
    ) -> WorkflowDefinition:
        """Directly add a factory (non-decorator version)."""
        workflow_name = name or factory.__name__
        definition = WorkflowDefinition(
            name=workflow_name,
            factory=factory,
            description=(description or factory.__doc__ or "").strip(),
        )
        if workflow_name in self._workflows:
            logger.warning(f"Replacing registered workflow: {workflow_name}")
        self._workflows[workflow_name] = definition
        logger.debug(f"Registered workflow: {workflow_name}")
        return definition

    def get(self, name: str) -> Optional[WorkflowDefinition]:
        """Get a workflow definition by name."""
        return self._workflows.get(name)

    def create(self, name: str, **kwargs: Any) -> Graph:
        """
        Build a new graph from a registered factory.

        Raises:
            KeyError: If the workflow is not registered
            StructuralError: If the factory does not return a Graph
        """
        definition = self.get(name)
        if not definition:
            raise KeyError(f"Workflow '{name}' not found in registry")
        return definition.create(**kwargs)

    def remove(self, name: str) -> bool:
        """Remove a workflow from the registry."""
        if name in self._workflows:
            del self._workflows[name]
            return True
        return False

    def list_workflows(self) -> List[Dict[str, Any]]:
        """List all registered workflows with their metadata."""
        return [definition.to_dict() for definition in self._workflows.values()]

    def has(self, name: str) -> bool:
        """Check if a workflow is registered."""
        return name in self._workflows

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._workflows)

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(self._workflows.values())
