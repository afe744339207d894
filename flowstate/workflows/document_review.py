"""
Document Review Workflow Implementation.

Sample workflow demonstrating the engine:
1. Draft: normalize the submitted document
2. Revise: fix one class of issue per pass, looping on itself until the
   quality score meets the threshold or attempts run out
3. Approve: suspend until a reviewer supplies a decision via resume
4. Publish or reject
"""

from typing import Any, List, Optional
import logging
import re

from flowstate.engine.command import Complete, GraphCommand, Suspend, Traverse
from flowstate.engine.context import ContextKey, WorkflowContext
from flowstate.engine.graph import Graph, context_equals
from flowstate.engine.node import node
from flowstate.engine.state import WorkflowState
from flowstate.registry import WorkflowRegistry


logger = logging.getLogger(__name__)


ATTEMPTS = ContextKey.integer("review.attempts")
SCORE = ContextKey.floating("review.score")
APPROVED = ContextKey.boolean("review.approved")
REVIEWER = ContextKey.string("review.reviewer")

WORKFLOW_NAME = "document-review"
MAX_SCORE = 10.0


# ============================================================
# Text checks
# ============================================================

def _has_todo(text: str) -> bool:
    return re.search(r"\bTODO\b", text) is not None


def _remove_todo(text: str) -> str:
    return re.sub(r"\bTODO\b:?\s*", "", text)


def _has_bad_whitespace(text: str) -> bool:
    return re.search(r"\s{2,}", text) is not None or text != text.strip()


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s{2,}", " ", text).strip()


def _has_lowercase_start(text: str) -> bool:
    return re.search(r"(^|[.!?]\s+)[a-z]", text) is not None


def _capitalize_sentences(text: str) -> str:
    return re.sub(r"(^|[.!?]\s+)([a-z])", lambda m: m.group(1) + m.group(2).upper(), text)


def _missing_terminator(text: str) -> bool:
    return bool(text) and not text.rstrip().endswith((".", "!", "?"))


def _terminate(text: str) -> str:
    return text.rstrip() + "."


# Applied in this order, one per revision pass
CHECKS = [
    ("todo", _has_todo, _remove_todo),
    ("whitespace", _has_bad_whitespace, _collapse_whitespace),
    ("capitalization", _has_lowercase_start, _capitalize_sentences),
    ("punctuation", _missing_terminator, _terminate),
]


def find_issues(text: str) -> List[str]:
    """Names of the checks the text currently fails."""
    return [name for name, detect, _ in CHECKS if detect(text)]


def score_text(text: str) -> float:
    """Quality score out of 10; each open issue costs an equal share."""
    if not text.strip():
        return 0.0
    return MAX_SCORE - len(find_issues(text)) * (MAX_SCORE / len(CHECKS))


# ============================================================
# Node Handlers (using the @node decorator)
# ============================================================

@node("draft", name="Draft", description="Normalize the submitted document", entry=True)
def draft_node(state: WorkflowState) -> GraphCommand:
    """
    Accepts a plain string or ``{"text": ...}`` payload.

    Produces ``{"text": str, "fixes": []}`` and resets the attempt counter.
    """
    payload = state.data
    text = payload.get("text", "") if isinstance(payload, dict) else str(payload or "")
    return Traverse(
        data={"text": text, "fixes": []},
        context_update=WorkflowContext.of(ATTEMPTS, 0, SCORE, score_text(text)),
    )


@node("revise", name="Revise", description="Fix the first open issue and rescore")
def revise_node(state: WorkflowState) -> GraphCommand:
    """
    One revision pass.

    Updates context:
    - review.attempts: incremented
    - review.score: score after the fix
    """
    text = state.data["text"]
    fixes = list(state.data["fixes"])
    for name, detect, fix in CHECKS:
        if detect(text):
            text = fix(text)
            fixes.append(name)
            break

    attempts = state.get(ATTEMPTS, 0) + 1
    score = score_text(text)
    logger.info(f"Revision {attempts}: score {score:.1f}, fixes so far {fixes}")
    return Traverse(
        data={"text": text, "fixes": fixes},
        context_update=WorkflowContext.of(ATTEMPTS, attempts, SCORE, score),
    )


@node("approve", name="Approve", description="Wait for a reviewer decision")
def approve_node(state: WorkflowState) -> GraphCommand:
    """Suspends until ``review.approved`` is present in the context."""
    if not state.context.contains(APPROVED):
        return Suspend(reason="Awaiting reviewer approval")
    return Traverse(reason="reviewer decided")


@node("publish", name="Publish", description="Publish the approved document")
def publish_node(state: WorkflowState) -> GraphCommand:
    return Complete(result={
        "status": "published",
        "text": state.data["text"],
        "score": state.get(SCORE),
        "reviewer": state.get(REVIEWER),
        "fixes": state.data["fixes"],
    })


@node("reject", name="Reject", description="Reject the document")
def reject_node(state: WorkflowState) -> GraphCommand:
    if state.get(APPROVED) is False:
        reason = "declined by reviewer"
    else:
        reason = f"quality below threshold after {state.get(ATTEMPTS, 0)} attempt(s)"
    return Complete(result={
        "status": "rejected",
        "text": state.data["text"],
        "score": state.get(SCORE),
        "reason": reason,
    })


# ============================================================
# Workflow Factory
# ============================================================

def create_document_review_workflow(
    quality_threshold: float = 7.5,
    max_attempts: int = 5,
) -> Graph:
    """
    Create a Document Review workflow graph.

    Workflow flow:
    ```
    draft → revise ─┬─→ approve (score >= threshold) ─┬─→ publish (approved)
                    │                                  └─→ reject (default)
                    ├─→ revise (retry while attempts < max)
                    └─→ reject (default)
    ```

    Args:
        quality_threshold: Minimum score needed to reach approval
        max_attempts: Maximum revision passes

    Returns:
        Configured Graph instance
    """
    def quality_met(payload: Any, state: WorkflowState) -> bool:
        return state.get(SCORE, 0.0) >= quality_threshold

    def can_retry(payload: Any, state: WorkflowState) -> bool:
        return state.get(ATTEMPTS, 0) < max_attempts

    graph = Graph(
        name="Document Review Workflow",
        description=(
            "Revises a document until its quality score reaches "
            f"{quality_threshold} (max {max_attempts} passes), then waits for approval."
        ),
        metadata={"quality_threshold": quality_threshold, "max_attempts": max_attempts},
    )

    graph.add_nodes(draft_node, revise_node, approve_node, publish_node, reject_node)

    graph.add_edge("draft", "revise")
    graph.add_edge("revise", "approve", predicate=quality_met, priority=10, description="quality met")
    graph.add_edge("revise", "revise", predicate=can_retry, priority=5, description="retry")
    graph.add_edge("revise", "reject", is_default=True, description="out of attempts")
    graph.add_edge("approve", "publish", predicate=context_equals(APPROVED, True))
    graph.add_edge("approve", "reject", is_default=True)

    return graph


def register_document_review_workflow(
    registry: WorkflowRegistry,
    name: Optional[str] = None,
) -> WorkflowRegistry:
    """Add the document review factory to ``registry``."""
    registry.add(
        create_document_review_workflow,
        name=name or WORKFLOW_NAME,
        description="Revise a document in a loop, then suspend for human approval",
    )
    logger.info(f"Registered workflow: {name or WORKFLOW_NAME}")
    return registry


def reviewer_decision(approved: bool, reviewer: str) -> WorkflowContext:
    """Context to pass to ``resume`` when a reviewer decides."""
    return WorkflowContext.of(APPROVED, approved, REVIEWER, reviewer)
