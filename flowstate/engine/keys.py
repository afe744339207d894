"""
Well-known context keys written by the engine and the confidence router.
"""

from datetime import datetime

from flowstate.engine.context import ContextKey


# Workflow lifecycle
WORKFLOW_ID = ContextKey.string("workflow.id")
WORKFLOW_NAME = ContextKey.string("workflow.name")
STARTED_AT = ContextKey("workflow.started_at", datetime)
RESUMED_AT = ContextKey("workflow.resumed_at", datetime)
RESUME_COUNT = ContextKey.integer("workflow.resume_count")
LAST_EDGE_ID = ContextKey.string("workflow.last_edge_id")

# Confidence routing
ROUTE_SELECTED = ContextKey.string("routing.selected_route")
ROUTE_CONFIDENCE = ContextKey.floating("routing.confidence")
ROUTE_REASONING = ContextKey.string("routing.reasoning")
ORIGINAL_ROUTE = ContextKey.string("routing.original_route")
FALLBACK_REASON = ContextKey.string("routing.fallback_reason")
USED_FALLBACK = ContextKey.boolean("routing.used_fallback")
EXECUTED_ROUTE = ContextKey.string("routing.executed_route")
