"""
Error taxonomy for the knowledge synthesis graph.

Every failure a caller can see derives from ``SynthesisError`` and carries a
machine-readable ``error_code`` plus optional ``details`` for debugging.

Example:
    raise NotFound("Node not found", details={"node_id": str(node_id)})
"""

from typing import Optional


class SynthesisError(Exception):
    """Base exception for knowledge graph operations."""

    error_code: str = "synthesis_error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}


class ValidationError(SynthesisError):
    """
    Input failed validation.

    Raised before any write happens: missing fields, bad URLs, empty search
    queries, self-loops, clusters without a valid center.
    """

    error_code = "validation_error"


class PermissionDenied(SynthesisError):
    """The requester does not own the referenced node, edge or cluster."""

    error_code = "forbidden"


class NotFound(SynthesisError):
    """The referenced id does not exist."""

    error_code = "not_found"


class StoreError(SynthesisError):
    """
    Unexpected failure from the storage layer.

    The original exception is chained as ``__cause__``.
    """

    error_code = "store_error"
