"""
Graph traversal for neighbourhood and related-node queries.

Walks the connection table, never the cached neighbour lists, and never
bumps access counters.
"""

import logging
from collections import deque
from typing import Optional
from uuid import UUID

from ..core import KnowledgeGraph, KnowledgeNode, RelatedNode, StorageBackend
from ..errors import NotFound, PermissionDenied, ValidationError
from ..validation import coerce_uuid

logger = logging.getLogger(__name__)


class NeighborhoodExtractor:
    """
    Extract bounded-depth neighbourhoods from the knowledge graph.

    Connections are undirected for traversal purposes.
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def _owned(self, requester: str, node_id) -> KnowledgeNode:
        node_id = coerce_uuid(node_id, "node_id")
        node = self.storage.get_node(node_id)
        if node is None:
            raise NotFound("Node not found", details={"node_id": str(node_id)})
        if node.owner_id != requester:
            raise PermissionDenied("Access denied", details={"node_id": str(node_id)})
        return node

    def reachable_ids(self, center_id: UUID, depth: int) -> list[UUID]:
        """
        Breadth-first walk from a node.

        Args:
            center_id: Node to start from
            depth: Maximum edges to traverse

        Returns:
            Node ids within ``depth`` hops, in discovery order (center first)
        """
        visited: set[UUID] = {center_id}
        order: list[UUID] = [center_id]

        # Queue: (node_id, hop_count)
        queue: deque[tuple[UUID, int]] = deque()
        queue.append((center_id, 0))

        while queue:
            current_id, hop_count = queue.popleft()

            # Don't traverse beyond depth
            if hop_count >= depth:
                continue

            for connection in self.storage.get_connections(current_id):
                next_id = connection.other_end(current_id)
                if next_id not in visited:
                    visited.add(next_id)
                    order.append(next_id)
                    queue.append((next_id, hop_count + 1))

        return order

    def neighborhood(
        self,
        requester: str,
        center_id=None,
        depth: int = 2,
    ) -> KnowledgeGraph:
        """
        Nodes within ``depth`` hops of a center plus the edges among them.

        Without a center, returns the requester's whole graph.
        """
        if center_id is None:
            return KnowledgeGraph(
                nodes=self.storage.query_nodes(requester),
                connections=self.storage.get_owner_connections(requester),
            )

        if depth < 0:
            raise ValidationError("depth must not be negative", details={"depth": depth})

        center = self._owned(requester, center_id)
        node_ids = self.reachable_ids(center.id, depth)

        nodes = [center]
        for node_id in node_ids[1:]:
            node = self.storage.get_node(node_id)
            if node:
                nodes.append(node)

        connections = self.storage.get_connections_among(node_ids)
        logger.debug(
            "Neighbourhood of %s at depth %d: %d nodes, %d connections",
            center.id, depth, len(nodes), len(connections),
        )
        return KnowledgeGraph(nodes=nodes, connections=connections, center_node_id=center.id)

    def related_nodes(
        self,
        requester: str,
        node_id,
        limit: int = 10,
    ) -> list[RelatedNode]:
        """
        Directly connected nodes, strongest connection first.

        Each neighbour appears once, with its strongest connection.
        """
        if limit < 1:
            raise ValidationError("limit must be positive", details={"limit": limit})
        node = self._owned(requester, node_id)

        related: list[RelatedNode] = []
        seen: set[UUID] = set()
        for connection in self.storage.get_connections(node.id):
            other_id = connection.other_end(node.id)
            if other_id in seen:
                continue
            seen.add(other_id)
            other: Optional[KnowledgeNode] = self.storage.get_node(other_id)
            if other is None:
                continue
            related.append(RelatedNode(
                node=other,
                connection_strength=connection.strength,
                connection_type=connection.connection_type,
            ))
            if len(related) >= limit:
                break
        return related
