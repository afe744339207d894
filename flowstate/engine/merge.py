"""
Context merge resolution for resumed workflows.

When a suspended workflow is resumed with new context values, the saved
(suspended) context and the incoming (resume) context may disagree on a
key. A ContextMergeStrategy decides which value survives and records
every disagreement as a ContextConflict.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from flowstate.engine.context import ContextKey, WorkflowContext


class ContextMergeStrategy(str, Enum):
    """How to reconcile suspended and resume contexts."""
    RESUME_WINS = "resume_wins"          # Resume values override, no conflicts reported
    SUSPENDED_WINS = "suspended_wins"    # Keep saved values, only add new keys
    MERGE_SAFE = "merge_safe"            # Keep saved values, report conflicts unresolved
    MERGE_LATEST = "merge_latest"        # Resume values override, conflicts reported with warnings

    def merge(
        self,
        suspended: WorkflowContext,
        resume: Optional[WorkflowContext],
    ) -> "ContextMergeResult":
        return merge_contexts(suspended, resume, self)

    @classmethod
    def parse(cls, value: Union[str, "ContextMergeStrategy"]) -> "ContextMergeStrategy":
        """Accept an enum member or its case-insensitive name/value."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown merge strategy '{value}'. Available: {[m.value for m in cls]}")


@dataclass(frozen=True)
class ContextConflict:
    """A key present in both contexts with different values."""
    key: ContextKey
    suspended_value: Any
    resume_value: Any
    resolved_value: Any = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.name,
            "suspended_value": self.suspended_value,
            "resume_value": self.resume_value,
            "resolved_value": self.resolved_value,
            "resolved": self.is_resolved,
        }


@dataclass(frozen=True)
class ContextMergeResult:
    """Outcome of merging a suspended context with a resume context."""
    merged_context: WorkflowContext
    conflicts: Tuple[ContextConflict, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def has_unresolved_conflicts(self) -> bool:
        return any(not c.is_resolved for c in self.conflicts)


def _resume_wins(suspended: WorkflowContext, resume: WorkflowContext) -> ContextMergeResult:
    return ContextMergeResult(suspended.merge(resume))


def _keep_suspended(
    suspended: WorkflowContext,
    resume: WorkflowContext,
    resolve: bool,
) -> ContextMergeResult:
    additions: Dict[ContextKey, Any] = {}
    conflicts: List[ContextConflict] = []
    for key, resume_value in resume.items():
        if not suspended.contains(key):
            additions[key] = resume_value
            continue
        suspended_value = suspended[key]
        if suspended_value != resume_value:
            conflicts.append(ContextConflict(
                key=key,
                suspended_value=suspended_value,
                resume_value=resume_value,
                resolved_value=suspended_value if resolve else None,
            ))
    return ContextMergeResult(suspended.update(additions), tuple(conflicts))


def _suspended_wins(suspended: WorkflowContext, resume: WorkflowContext) -> ContextMergeResult:
    return _keep_suspended(suspended, resume, resolve=True)


def _merge_safe(suspended: WorkflowContext, resume: WorkflowContext) -> ContextMergeResult:
    return _keep_suspended(suspended, resume, resolve=False)


def _merge_latest(suspended: WorkflowContext, resume: WorkflowContext) -> ContextMergeResult:
    conflicts: List[ContextConflict] = []
    warnings: List[str] = []
    for key, resume_value in resume.items():
        if not suspended.contains(key):
            continue
        suspended_value = suspended[key]
        if suspended_value != resume_value:
            conflicts.append(ContextConflict(
                key=key,
                suspended_value=suspended_value,
                resume_value=resume_value,
                resolved_value=resume_value,
            ))
            warnings.append(
                f"Context conflict for key '{key.name}': suspended={suspended_value}, "
                f"resume={resume_value} (using resume value)"
            )
    return ContextMergeResult(suspended.merge(resume), tuple(conflicts), tuple(warnings))


_RESOLVERS: Dict[ContextMergeStrategy, Callable[[WorkflowContext, WorkflowContext], ContextMergeResult]] = {
    ContextMergeStrategy.RESUME_WINS: _resume_wins,
    ContextMergeStrategy.SUSPENDED_WINS: _suspended_wins,
    ContextMergeStrategy.MERGE_SAFE: _merge_safe,
    ContextMergeStrategy.MERGE_LATEST: _merge_latest,
}


def merge_contexts(
    suspended: WorkflowContext,
    resume: Optional[WorkflowContext],
    strategy: ContextMergeStrategy = ContextMergeStrategy.RESUME_WINS,
) -> ContextMergeResult:
    """
    Merge a resume context into a suspended one.

    Pure and deterministic: conflicts are listed in the resume context's
    key order, and the merged context lists suspended keys first.

    Args:
        suspended: Context saved with the suspended state
        resume: Context supplied by the caller on resume (may be None)
        strategy: Resolution strategy

    Returns:
        ContextMergeResult with merged context, conflicts and warnings
    """
    if resume is None or not resume:
        return ContextMergeResult(suspended)
    return _RESOLVERS[ContextMergeStrategy.parse(strategy)](suspended, resume)
