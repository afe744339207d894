"""
Workflows package - Sample workflow implementations.
"""

from flowstate.workflows.document_review import (
    create_document_review_workflow,
    register_document_review_workflow,
)

__all__ = [
    "create_document_review_workflow",
    "register_document_review_workflow",
]
