"""Synthesis core - knowledge nodes, connections, clusters, and storage."""

from .models import (
    AUTO_GENERATED_PREFIX,
    DEFAULT_SEARCH_LIMIT,
    ConnectionPatch,
    ConnectionType,
    KnowledgeCluster,
    KnowledgeConnection,
    KnowledgeGraph,
    KnowledgeNode,
    NodeFilters,
    NodePatch,
    NodeType,
    Page,
    RelatedNode,
    SearchOptions,
    SearchResult,
    normalize_tags,
    utcnow,
)
from .storage import StorageBackend, SQLiteBackend

__all__ = [
    "AUTO_GENERATED_PREFIX",
    "DEFAULT_SEARCH_LIMIT",
    "ConnectionPatch",
    "ConnectionType",
    "KnowledgeCluster",
    "KnowledgeConnection",
    "KnowledgeGraph",
    "KnowledgeNode",
    "NodeFilters",
    "NodePatch",
    "NodeType",
    "Page",
    "RelatedNode",
    "SearchOptions",
    "SearchResult",
    "normalize_tags",
    "utcnow",
    "StorageBackend",
    "SQLiteBackend",
]
