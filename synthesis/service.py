"""
Knowledge synthesis facade - one object for every requester-scoped operation.

Wires the stores, the auto-linker and the query engines around a single
storage backend.

Example:
    from synthesis import KnowledgeSynthesis

    with KnowledgeSynthesis("knowledge.db") as kb:
        node = kb.create_node(
            "alice",
            title="Deep Work",
            body="Cal Newport on focus and depth",
            tags=["focus", "productivity"],
        )
        kb.wait_for_links()
        for hit in kb.search("alice", "focus"):
            print(hit.node.title, hit.relevance_score)
"""

from pathlib import Path
from typing import Optional
from uuid import UUID

from .clusters import ClusterManager
from .connections import ConnectionStore
from .core import (
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
    SQLiteBackend,
    StorageBackend,
)
from .errors import ValidationError
from .linking import AutoLinker, BackgroundLinkScheduler, LinkScheduler, RelationClassifier
from .nodes import NodeStore
from .query import NeighborhoodExtractor, SearchEngine

DEFAULT_DB = Path.home() / ".synthesis" / "knowledge.db"


def _build_patch(patch_cls, changes: dict):
    try:
        return patch_cls(**changes)
    except TypeError as e:
        raise ValidationError(f"Unknown field in update: {e}") from None


class KnowledgeSynthesis:
    """High-level interface for knowledge graph operations."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        storage: Optional[StorageBackend] = None,
        scheduler: Optional[LinkScheduler] = None,
        classifier: Optional[RelationClassifier] = None,
    ):
        """Initialize the knowledge graph.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.synthesis/knowledge.db
            storage: Pre-built backend; takes precedence over ``db_path``
            scheduler: Where auto-link jobs run (default: background thread)
            classifier: Relation classifier for auto-generated connections
        """
        if storage is None:
            if db_path is None:
                db_path = str(DEFAULT_DB)
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            storage = SQLiteBackend(db_path)
            storage.initialize()
        self.storage = storage

        self.scheduler = scheduler or BackgroundLinkScheduler()
        self.connections = ConnectionStore(self.storage)
        self.clusters = ClusterManager(self.storage)
        self.linker = AutoLinker(self.storage, self.connections, classifier=classifier)
        self.nodes = NodeStore(
            self.storage,
            self.connections,
            self.clusters,
            on_write=self._schedule_link,
        )
        self.search_engine = SearchEngine(self.storage)
        self.extractor = NeighborhoodExtractor(self.storage)

    def _schedule_link(self, node_id: UUID) -> None:
        self.scheduler.submit(lambda: self.linker.link_node(node_id))

    def wait_for_links(self) -> None:
        """Block until scheduled auto-linking has finished."""
        self.scheduler.wait()

    def close(self):
        """Finish pending auto-links and close the database connection."""
        self.scheduler.shutdown()
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =========================================================================
    # Nodes
    # =========================================================================

    def create_node(
        self,
        requester: str,
        title: str,
        body: str,
        type=NodeType.NOTE,
        source: Optional[str] = None,
        author: Optional[str] = None,
        url: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[list[str]] = None,
        importance_score: int = 5,
    ) -> KnowledgeNode:
        return self.nodes.create(
            requester,
            title=title,
            body=body,
            type=type,
            source=source,
            author=author,
            url=url,
            category=category,
            tags=tags,
            importance_score=importance_score,
        )

    def get_node(self, requester: str, node_id) -> KnowledgeNode:
        return self.nodes.read(requester, node_id)

    def list_nodes(
        self,
        requester: str,
        filters: Optional[NodeFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        return self.nodes.list(requester, filters, page=page, limit=limit)

    def update_node(self, requester: str, node_id, **changes) -> KnowledgeNode:
        """Update a node. Keyword arguments are ``NodePatch`` fields."""
        return self.nodes.update(requester, node_id, _build_patch(NodePatch, changes))

    def delete_node(self, requester: str, node_id) -> None:
        self.nodes.delete(requester, node_id)

    # =========================================================================
    # Connections
    # =========================================================================

    def create_connection(
        self,
        requester: str,
        source_node_id,
        target_node_id,
        connection_type=ConnectionType.RELATED,
        strength: Optional[float] = None,
        description: Optional[str] = None,
    ) -> KnowledgeConnection:
        return self.connections.create(
            requester,
            source_node_id,
            target_node_id,
            connection_type=connection_type,
            strength=strength,
            description=description,
        )

    def list_connections(self, requester: str, node_id) -> list[KnowledgeConnection]:
        return self.connections.list(requester, node_id)

    def update_connection(self, requester: str, connection_id, **changes) -> KnowledgeConnection:
        """Update a connection. Keyword arguments are ``ConnectionPatch`` fields."""
        return self.connections.update(
            requester, connection_id, _build_patch(ConnectionPatch, changes)
        )

    def delete_connection(self, requester: str, connection_id) -> None:
        self.connections.delete(requester, connection_id)

    def rebuild_neighbor_cache(self, requester: str) -> int:
        return self.connections.rebuild_neighbor_cache(requester)

    # =========================================================================
    # Clusters
    # =========================================================================

    def create_cluster(
        self,
        requester: str,
        name: str,
        node_ids: list,
        center_node_id,
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> KnowledgeCluster:
        return self.clusters.create(
            requester,
            name=name,
            node_ids=node_ids,
            center_node_id=center_node_id,
            description=description,
            tags=tags,
        )

    def list_clusters(self, requester: str) -> list[KnowledgeCluster]:
        return self.clusters.list(requester)

    def get_cluster(self, requester: str, cluster_id) -> KnowledgeCluster:
        return self.clusters.get(requester, cluster_id)

    # =========================================================================
    # Search and discovery
    # =========================================================================

    def search(
        self,
        requester: str,
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchResult]:
        return self.search_engine.search(requester, query, options)

    def get_related_nodes(self, requester: str, node_id, limit: int = 10) -> list[RelatedNode]:
        return self.extractor.related_nodes(requester, node_id, limit=limit)

    def get_knowledge_graph(
        self,
        requester: str,
        center_node_id=None,
        depth: int = 2,
    ) -> KnowledgeGraph:
        return self.extractor.neighborhood(requester, center_node_id, depth=depth)
