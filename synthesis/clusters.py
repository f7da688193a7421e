"""
Cluster manager: named groups of nodes scored for internal coherence.

Coherence is a snapshot taken at creation time. Later edits to the graph
don't touch it, and deleting a member only removes it from the list.
"""

import logging
from typing import Optional
from uuid import UUID

from .core import KnowledgeCluster, KnowledgeConnection, StorageBackend, normalize_tags, utcnow
from .errors import NotFound, PermissionDenied, ValidationError
from .validation import coerce_uuid, require_text, sanitize_optional

logger = logging.getLogger(__name__)

STRENGTH_WEIGHT = 0.6
DENSITY_WEIGHT = 0.4


def coherence_score(member_ids: list[UUID], connections: list[KnowledgeConnection]) -> float:
    """
    How densely and strongly a set of nodes is interconnected.

    ``0.6 * mean strength + 0.4 * density`` over the connections with both
    endpoints inside the set. Density is capped at 1 because duplicate
    edges between one pair are allowed.
    """
    members = set(member_ids)
    internal = [
        c for c in connections
        if c.source_node_id in members and c.target_node_id in members
    ]
    if not internal:
        return 0.0

    mean_strength = sum(c.strength for c in internal) / len(internal)
    n = len(members)
    max_pairs = n * (n - 1) / 2
    density = min(1.0, len(internal) / max_pairs) if max_pairs else 0.0
    return STRENGTH_WEIGHT * mean_strength + DENSITY_WEIGHT * density


class ClusterManager:
    """Create and list clusters; keep membership in step with node deletes."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def create(
        self,
        requester: str,
        name: str,
        node_ids: list,
        center_node_id,
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> KnowledgeCluster:
        """
        Group nodes under a name and score the group.

        Raises:
            ValidationError: blank name, no members, center not a member
            NotFound: a member does not exist
            PermissionDenied: a member belongs to someone else
        """
        name = require_text(name, "name")
        members = list(dict.fromkeys(coerce_uuid(n, "node_ids") for n in node_ids or []))
        if not members:
            raise ValidationError("node_ids is required", details={"field": "node_ids"})
        if center_node_id is None:
            raise ValidationError("center_node_id is required", details={"field": "center_node_id"})
        center = coerce_uuid(center_node_id, "center_node_id")
        if center not in members:
            raise ValidationError(
                "center_node_id must be one of the cluster's nodes",
                details={"center_node_id": str(center)},
            )

        for node_id in members:
            node = self.storage.get_node(node_id)
            if node is None:
                raise NotFound("Node not found", details={"node_id": str(node_id)})
            if node.owner_id != requester:
                raise PermissionDenied(
                    "Access denied to one or more nodes", details={"node_id": str(node_id)}
                )

        cluster = KnowledgeCluster(
            owner_id=requester,
            name=name,
            description=sanitize_optional(description),
            node_ids=members,
            center_node_id=center,
            coherence_score=coherence_score(
                members, self.storage.get_connections_among(members)
            ),
            tags=normalize_tags(tags),
        )
        self.storage.add_cluster(cluster)
        logger.info(
            "Created cluster %s (%d nodes, coherence %.2f)",
            cluster.id, len(members), cluster.coherence_score,
        )
        return cluster

    def get(self, requester: str, cluster_id) -> KnowledgeCluster:
        cluster_id = coerce_uuid(cluster_id, "cluster_id")
        cluster = self.storage.get_cluster(cluster_id)
        if cluster is None:
            raise NotFound("Cluster not found", details={"cluster_id": str(cluster_id)})
        if cluster.owner_id != requester:
            raise PermissionDenied("Access denied", details={"cluster_id": str(cluster_id)})
        return cluster

    def list(self, requester: str):
        return self.storage.list_clusters(requester)

    def remove_member(self, node_id: UUID) -> int:
        """Drop a node from every cluster. Returns how many clusters changed."""
        changed = 0
        for cluster in self.storage.clusters_containing(node_id):
            cluster.node_ids = [n for n in cluster.node_ids if n != node_id]
            if cluster.center_node_id == node_id:
                cluster.center_node_id = cluster.node_ids[0] if cluster.node_ids else None
            cluster.updated_at = utcnow()
            self.storage.update_cluster(cluster)
            changed += 1
        return changed
