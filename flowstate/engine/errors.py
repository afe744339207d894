"""
Error taxonomy for the workflow engine.

Engine entry points return these as values on ``ExecutionResult.error``
rather than raising them. Only structural problems at registration time,
``TypeMismatchError`` and ``FanOutError`` reach the caller as exceptions.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for every workflow failure."""

    code = "WORKFLOW_ERROR"

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.cause = cause
        self.details: Dict[str, Any] = dict(details or {})

    def with_node(self, node_id: str) -> "WorkflowError":
        """Fill in the failing node when the error does not name one yet."""
        if self.node_id is None:
            self.node_id = node_id
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "node_id": self.node_id,
            "cause": repr(self.cause) if self.cause else None,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, node_id={self.node_id!r})"


class StructuralError(WorkflowError):
    """The graph definition is invalid."""

    code = "STRUCTURAL_ERROR"

    def __init__(self, problems: List[str], message: Optional[str] = None):
        self.problems = list(problems)
        super().__init__(
            message or f"Graph validation failed: {'; '.join(self.problems)}",
            details={"problems": self.problems},
        )


class NoRouteFoundError(WorkflowError):
    """No outgoing edge of a node matched and no default edge exists."""

    code = "NO_ROUTE_FOUND"

    def __init__(self, from_node: str, message: Optional[str] = None):
        self.from_node = from_node
        super().__init__(
            message or f"No route found from node '{from_node}'",
            node_id=from_node,
        )


class CannotResumeError(WorkflowError):
    """The saved state does not point at a node that can be re-entered."""

    code = "CANNOT_RESUME"


class StepBudgetExceededError(WorkflowError):
    """A single start/resume call invoked more nodes than allowed."""

    code = "STEP_BUDGET_EXCEEDED"

    def __init__(self, max_steps: int, node_id: Optional[str] = None):
        self.max_steps = max_steps
        super().__init__(
            f"Maximum execution steps ({max_steps}) exceeded",
            node_id=node_id,
            details={"max_steps": max_steps},
        )


class LowConfidenceNoFallbackError(WorkflowError):
    """Classifier confidence was below the threshold and no fallback is set."""

    code = "LOW_CONFIDENCE_NO_FALLBACK"

    def __init__(self, route: str, confidence: float, threshold: float):
        self.route = route
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(
            f"Confidence {confidence:.2f} for route '{route}' is below "
            f"threshold {threshold:.2f} and no fallback route is configured",
            details={"route": route, "confidence": confidence, "threshold": threshold},
        )


class ExecutionError(WorkflowError):
    """A node, route or output extractor failed."""

    code = "EXECUTION_ERROR"


class FanOutError(WorkflowError):
    """One or more fan-out items failed; carries every failure."""

    code = "FAN_OUT_FAILED"

    def __init__(self, failures: List[Any]):
        self.failures = list(failures)
        indexes = [f.index for f in self.failures]
        super().__init__(
            f"{len(self.failures)} fan-out task(s) failed at indexes {indexes}",
            cause=self.failures[0].error if self.failures else None,
            details={"failed_indexes": indexes},
        )


class TypeMismatchError(TypeError):
    """A context value does not match the declared type of its key."""

    def __init__(self, key_name: str, expected: type, value: Any):
        self.key_name = key_name
        self.expected = expected
        self.value = value
        super().__init__(
            f"Context key '{key_name}' expects {expected.__name__}, "
            f"got {type(value).__name__}"
        )


def as_workflow_error(error: Any, node_id: Optional[str] = None) -> WorkflowError:
    """Normalize an exception or message into a WorkflowError."""
    if isinstance(error, WorkflowError):
        return error.with_node(node_id) if node_id else error
    if isinstance(error, BaseException):
        return ExecutionError(str(error) or type(error).__name__, node_id=node_id, cause=error)
    return ExecutionError(str(error), node_id=node_id)
