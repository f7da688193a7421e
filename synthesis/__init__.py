"""
Synthesis - a personal knowledge graph.

Auto-linked knowledge nodes, lexical search, scored clusters, bounded-depth
graph views.
"""

from .core import (
    ConnectionType,
    KnowledgeCluster,
    KnowledgeConnection,
    KnowledgeGraph,
    KnowledgeNode,
    NodeFilters,
    NodeType,
    SearchOptions,
    SearchResult,
    StorageBackend,
    SQLiteBackend,
)
from .errors import NotFound, PermissionDenied, StoreError, SynthesisError, ValidationError
from .service import KnowledgeSynthesis

__version__ = "0.1.0"

__all__ = [
    "ConnectionType",
    "KnowledgeCluster",
    "KnowledgeConnection",
    "KnowledgeGraph",
    "KnowledgeNode",
    "NodeFilters",
    "NodeType",
    "SearchOptions",
    "SearchResult",
    "StorageBackend",
    "SQLiteBackend",
    "NotFound",
    "PermissionDenied",
    "StoreError",
    "SynthesisError",
    "ValidationError",
    "KnowledgeSynthesis",
    "__version__",
]
