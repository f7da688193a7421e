"""
Connection store: typed, weighted edges between an owner's nodes.

The edge table is authoritative. Each node also carries a cached
``neighbor_ids`` list; it is refreshed on every edge write and can be
rebuilt wholesale with ``rebuild_neighbor_cache`` after a partial failure.
"""

import logging
from typing import Optional
from uuid import UUID

from .core import (
    ConnectionPatch,
    ConnectionType,
    KnowledgeConnection,
    KnowledgeNode,
    StorageBackend,
)
from .errors import NotFound, PermissionDenied, ValidationError
from .validation import clamp_strength, coerce_enum, coerce_uuid, sanitize_optional

logger = logging.getLogger(__name__)

DEFAULT_STRENGTH = 0.5


class ConnectionStore:
    """CRUD for connections plus maintenance of the neighbour cache."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def _owned_node(self, requester: str, node_id: UUID) -> KnowledgeNode:
        node = self.storage.get_node(node_id)
        if node is None:
            raise NotFound("Node not found", details={"node_id": str(node_id)})
        if node.owner_id != requester:
            raise PermissionDenied("Access denied", details={"node_id": str(node_id)})
        return node

    def _owned_connection(self, requester: str, connection_id) -> KnowledgeConnection:
        connection_id = coerce_uuid(connection_id, "connection_id")
        connection = self.storage.get_connection(connection_id)
        if connection is None:
            raise NotFound(
                "Connection not found", details={"connection_id": str(connection_id)}
            )
        if connection.owner_id != requester:
            raise PermissionDenied(
                "Access denied", details={"connection_id": str(connection_id)}
            )
        return connection

    def create(
        self,
        requester: str,
        source_node_id,
        target_node_id,
        connection_type=ConnectionType.RELATED,
        strength: Optional[float] = None,
        description: Optional[str] = None,
    ) -> KnowledgeConnection:
        """
        Connect two nodes owned by the requester.

        Raises:
            ValidationError: self-loop, bad type or non-numeric strength
            NotFound: either endpoint is missing
            PermissionDenied: either endpoint belongs to someone else
        """
        source_id = coerce_uuid(source_node_id, "source_node_id")
        target_id = coerce_uuid(target_node_id, "target_node_id")
        if source_id == target_id:
            raise ValidationError(
                "Cannot connect a node to itself", details={"node_id": str(source_id)}
            )
        connection_type = coerce_enum(ConnectionType, connection_type, "connection_type")
        strength = clamp_strength(DEFAULT_STRENGTH if strength is None else strength)

        source = self._owned_node(requester, source_id)
        target = self._owned_node(requester, target_id)

        connection = KnowledgeConnection(
            owner_id=requester,
            source_node_id=source.id,
            target_node_id=target.id,
            connection_type=connection_type,
            strength=strength,
            description=sanitize_optional(description),
        )
        self.storage.add_connection(connection)

        # Cache update is a second step; a crash here leaves the cache stale
        self._add_neighbor(source.id, target.id)
        self._add_neighbor(target.id, source.id)
        return connection

    def get(self, requester: str, connection_id) -> KnowledgeConnection:
        return self._owned_connection(requester, connection_id)

    def list(self, requester: str, node_id) -> list[KnowledgeConnection]:
        """All connections touching a node, strongest first."""
        node = self._owned_node(requester, coerce_uuid(node_id, "node_id"))
        return self.storage.get_connections(node.id)

    def update(self, requester: str, connection_id, patch: ConnectionPatch) -> KnowledgeConnection:
        connection = self._owned_connection(requester, connection_id)

        if patch.connection_type is not None:
            connection.connection_type = coerce_enum(
                ConnectionType, patch.connection_type, "connection_type"
            )
        if patch.strength is not None:
            connection.strength = clamp_strength(patch.strength)
        if patch.description is not None:
            connection.description = sanitize_optional(patch.description)

        self.storage.update_connection(connection)
        return connection

    def delete(self, requester: str, connection_id) -> None:
        connection = self._owned_connection(requester, connection_id)
        self.storage.delete_connection(connection.id)
        self._refresh_neighbors(connection.source_node_id)
        self._refresh_neighbors(connection.target_node_id)

    def delete_for_node(self, node_id: UUID) -> int:
        """Remove every connection touching a node. Returns how many."""
        connections = self.storage.get_connections(node_id)
        survivors = set()
        for connection in connections:
            self.storage.delete_connection(connection.id)
            survivors.add(connection.other_end(node_id))
        for other_id in survivors:
            self._refresh_neighbors(other_id)
        return len(connections)

    def rebuild_neighbor_cache(self, requester: str) -> int:
        """Recompute every cached neighbour list of an owner. Returns node count."""
        adjacency: dict[UUID, list[UUID]] = {}
        for connection in self.storage.get_owner_connections(requester):
            for here, there in (
                (connection.source_node_id, connection.target_node_id),
                (connection.target_node_id, connection.source_node_id),
            ):
                neighbors = adjacency.setdefault(here, [])
                if there not in neighbors:
                    neighbors.append(there)

        nodes = self.storage.query_nodes(requester)
        for node in nodes:
            self.storage.set_neighbors(node.id, adjacency.get(node.id, []))
        logger.info("Rebuilt neighbour cache for %d nodes of %s", len(nodes), requester)
        return len(nodes)

    def _add_neighbor(self, node_id: UUID, neighbor_id: UUID) -> None:
        node = self.storage.get_node(node_id)
        if node is None:
            return
        if neighbor_id not in node.neighbor_ids:
            self.storage.set_neighbors(node_id, node.neighbor_ids + [neighbor_id])

    def _refresh_neighbors(self, node_id: UUID) -> None:
        neighbors: list[UUID] = []
        for connection in self.storage.get_connections(node_id):
            other = connection.other_end(node_id)
            if other not in neighbors:
                neighbors.append(other)
        self.storage.set_neighbors(node_id, neighbors)
