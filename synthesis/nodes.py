"""
Node store: CRUD for knowledge nodes.

Writes that change a node's body or tags hand the node id to ``on_write``
(normally the auto-link scheduler). Whatever that callback does, it cannot
fail the write.
"""

import logging
from typing import Callable, Optional
from uuid import UUID

from .clusters import ClusterManager
from .connections import ConnectionStore
from .core import (
    KnowledgeNode,
    NodeFilters,
    NodePatch,
    NodeType,
    Page,
    StorageBackend,
    normalize_tags,
    utcnow,
)
from .errors import NotFound, PermissionDenied, ValidationError
from .validation import (
    coerce_enum,
    coerce_uuid,
    require_text,
    sanitize_optional,
    validate_importance,
    validate_url,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


class NodeStore:
    """Owner-scoped create/read/update/delete/list for knowledge nodes."""

    def __init__(
        self,
        storage: StorageBackend,
        connections: ConnectionStore,
        clusters: ClusterManager,
        on_write: Optional[Callable[[UUID], None]] = None,
    ):
        self.storage = storage
        self.connections = connections
        self.clusters = clusters
        self.on_write = on_write

    def _owned(self, requester: str, node_id) -> KnowledgeNode:
        node_id = coerce_uuid(node_id, "node_id")
        node = self.storage.get_node(node_id)
        if node is None:
            raise NotFound("Node not found", details={"node_id": str(node_id)})
        if node.owner_id != requester:
            raise PermissionDenied("Access denied", details={"node_id": str(node_id)})
        return node

    def _notify(self, node_id: UUID) -> None:
        if self.on_write is None:
            return
        try:
            self.on_write(node_id)
        except Exception:
            logger.exception("Scheduling auto-link for %s failed", node_id)

    def create(
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
        """
        Validate and store a new node, then schedule auto-linking.

        Raises:
            ValidationError: missing title/body/type, bad URL or importance
        """
        if type is None:
            raise ValidationError("type is required", details={"field": "type"})

        node = KnowledgeNode(
            owner_id=requester,
            title=require_text(title, "title"),
            body=require_text(body, "body"),
            type=coerce_enum(NodeType, type, "type"),
            source=sanitize_optional(source),
            author=sanitize_optional(author),
            url=validate_url(url),
            category=sanitize_optional(category),
            tags=tags or [],
            importance_score=validate_importance(importance_score),
            access_count=0,
        )
        self.storage.add_node(node)
        logger.info("Created node %s for %s", node.id, requester)

        self._notify(node.id)
        return node

    def read(self, requester: str, node_id) -> KnowledgeNode:
        """Fetch a node and count the access."""
        node = self._owned(requester, node_id)
        now = utcnow()
        self.storage.record_access(node.id, now)
        return self.storage.get_node(node.id) or node

    def update(self, requester: str, node_id, patch: NodePatch) -> KnowledgeNode:
        """
        Apply a partial update.

        All fields are validated before anything is written. Changing the
        body or tags re-runs auto-linking for the node.
        """
        node = self._owned(requester, node_id)
        relink = False

        if patch.title is not None:
            node.title = require_text(patch.title, "title")
        if patch.body is not None:
            body = require_text(patch.body, "body")
            relink = relink or body != node.body
            node.body = body
        if patch.type is not None:
            node.type = coerce_enum(NodeType, patch.type, "type")
        if patch.source is not None:
            node.source = sanitize_optional(patch.source)
        if patch.author is not None:
            node.author = sanitize_optional(patch.author)
        if patch.url is not None:
            node.url = validate_url(patch.url)
        if patch.category is not None:
            node.category = sanitize_optional(patch.category)
        if patch.tags is not None:
            tags = normalize_tags(patch.tags)
            relink = relink or set(tags) != set(node.tags)
            node.tags = tags
        if patch.importance_score is not None:
            node.importance_score = validate_importance(patch.importance_score)

        node.updated_at = utcnow()
        self.storage.update_node(node)

        if relink:
            self._notify(node.id)
        return self.storage.get_node(node.id) or node

    def delete(self, requester: str, node_id) -> None:
        """Delete a node, its connections, and its cluster memberships."""
        node = self._owned(requester, node_id)
        removed = self.connections.delete_for_node(node.id)
        self.storage.delete_node(node.id)
        changed = self.clusters.remove_member(node.id)
        logger.info(
            "Deleted node %s (%d connections, %d clusters touched)",
            node.id, removed, changed,
        )

    def list(
        self,
        requester: str,
        filters: Optional[NodeFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """One page of the requester's nodes, most recently updated first."""
        filters = filters or NodeFilters()
        if page < 1:
            raise ValidationError("page must be at least 1", details={"page": page})
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": limit}
            )

        criteria = dict(
            types=[coerce_enum(NodeType, filters.type, "type")] if filters.type else None,
            categories=[filters.category] if filters.category else None,
            tags=normalize_tags(filters.tags),
            text=filters.text.strip() if filters.text and filters.text.strip() else None,
            importance_min=filters.importance_min,
            since=filters.created_since,
            until=filters.created_until,
        )
        items = self.storage.query_nodes(
            requester, offset=(page - 1) * limit, limit=limit, **criteria
        )
        total = self.storage.count_nodes(requester, **criteria)
        return Page(items=items, total=total, page=page, limit=limit)
