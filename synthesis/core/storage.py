"""
Storage backends for the knowledge synthesis graph.

Abstracts persistence so the services never touch SQL directly. Every query
is scoped by owner; ownership checks themselves live in the services.
"""

import functools
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from ..errors import StoreError
from .models import (
    ConnectionType,
    KnowledgeCluster,
    KnowledgeConnection,
    KnowledgeNode,
    NodeType,
)

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base for storage backends."""

    @abstractmethod
    def initialize(self) -> None:
        """Set up storage (create tables, indexes, etc.)."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources."""
        pass

    # Node operations
    @abstractmethod
    def add_node(self, node: KnowledgeNode) -> UUID:
        """Store a node. Returns the node ID."""
        pass

    @abstractmethod
    def get_node(self, node_id: UUID) -> Optional[KnowledgeNode]:
        """Retrieve a node by ID without touching its access counters."""
        pass

    @abstractmethod
    def update_node(self, node: KnowledgeNode) -> bool:
        """Overwrite a node's content fields. Returns success.

        Access counters and the neighbour cache are left alone; they are
        written only by ``record_access`` and ``set_neighbors``.
        """
        pass

    @abstractmethod
    def delete_node(self, node_id: UUID) -> bool:
        """Delete a node row. Returns success."""
        pass

    @abstractmethod
    def record_access(self, node_id: UUID, when: datetime) -> bool:
        """Atomically bump access_count and last_accessed_at."""
        pass

    @abstractmethod
    def set_neighbors(self, node_id: UUID, neighbor_ids: list[UUID]) -> bool:
        """Replace the cached neighbour list of a node."""
        pass

    @abstractmethod
    def query_nodes(
        self,
        owner_id: str,
        types: Optional[Iterable[NodeType]] = None,
        categories: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        text: Optional[str] = None,
        importance_min: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[KnowledgeNode]:
        """Find an owner's nodes, newest update first."""
        pass

    @abstractmethod
    def count_nodes(
        self,
        owner_id: str,
        types: Optional[Iterable[NodeType]] = None,
        categories: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        text: Optional[str] = None,
        importance_min: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> int:
        """Count the nodes ``query_nodes`` would return without paging."""
        pass

    # Connection operations
    @abstractmethod
    def add_connection(self, connection: KnowledgeConnection) -> UUID:
        """Create a relationship between nodes."""
        pass

    @abstractmethod
    def get_connection(self, connection_id: UUID) -> Optional[KnowledgeConnection]:
        """Retrieve a connection by ID."""
        pass

    @abstractmethod
    def update_connection(self, connection: KnowledgeConnection) -> bool:
        """Overwrite an existing connection."""
        pass

    @abstractmethod
    def delete_connection(self, connection_id: UUID) -> bool:
        """Remove a connection."""
        pass

    @abstractmethod
    def get_connections(self, node_id: UUID) -> list[KnowledgeConnection]:
        """Connections where the node is source or target, strongest first."""
        pass

    @abstractmethod
    def get_owner_connections(self, owner_id: str) -> list[KnowledgeConnection]:
        """Every connection of an owner, strongest first."""
        pass

    @abstractmethod
    def get_connections_among(self, node_ids: Iterable[UUID]) -> list[KnowledgeConnection]:
        """Connections whose two endpoints are both in ``node_ids``."""
        pass

    # Cluster operations
    @abstractmethod
    def add_cluster(self, cluster: KnowledgeCluster) -> UUID:
        pass

    @abstractmethod
    def get_cluster(self, cluster_id: UUID) -> Optional[KnowledgeCluster]:
        pass

    @abstractmethod
    def update_cluster(self, cluster: KnowledgeCluster) -> bool:
        pass

    @abstractmethod
    def list_clusters(self, owner_id: str) -> list[KnowledgeCluster]:
        """An owner's clusters, most recently updated first."""
        pass

    @abstractmethod
    def clusters_containing(self, node_id: UUID) -> list[KnowledgeCluster]:
        """Clusters that list the node as a member or center."""
        pass


def _guarded(method):
    """Serialize access to the shared connection and wrap sqlite errors."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            with self._lock:
                return method(self, *args, **kwargs)
        except sqlite3.Error as e:
            raise StoreError(
                f"Storage operation '{method.__name__}' failed: {e}",
                details={"operation": method.__name__},
            ) from e

    return wrapper


def _lower(value):
    return value.lower() if isinstance(value, str) else value


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class SQLiteBackend(StorageBackend):
    """SQLite storage backend - good for local, single-process use.

    The connection is shared across threads (the background auto-linker
    writes through it), so every call holds a re-entrant lock.
    """

    def __init__(self, db_path: str = "knowledge.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")

        # SQLite's lower() only folds ASCII
        self.conn.create_function("py_lower", 1, _lower, deterministic=True)

        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT NOT NULL,
                type TEXT NOT NULL,
                source TEXT,
                author TEXT,
                url TEXT,
                category TEXT,
                tags TEXT,  -- JSON array
                importance_score INTEGER DEFAULT 5
                    CHECK (importance_score BETWEEN 1 AND 10),
                access_count INTEGER DEFAULT 0,
                neighbor_ids TEXT,  -- JSON array, derived from connections
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_accessed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS connections (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                source_node_id TEXT NOT NULL,
                target_node_id TEXT NOT NULL,
                connection_type TEXT NOT NULL,
                strength REAL DEFAULT 0.5 CHECK (strength BETWEEN 0 AND 1),
                description TEXT,
                created_at TEXT NOT NULL,
                CHECK (source_node_id != target_node_id),
                FOREIGN KEY (source_node_id) REFERENCES nodes(id) ON DELETE CASCADE,
                FOREIGN KEY (target_node_id) REFERENCES nodes(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS clusters (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                node_ids TEXT NOT NULL,  -- JSON array
                center_node_id TEXT,
                coherence_score REAL DEFAULT 0,
                tags TEXT,  -- JSON array
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            -- Indexes for common queries
            CREATE INDEX IF NOT EXISTS idx_nodes_owner ON nodes(owner_id);
            CREATE INDEX IF NOT EXISTS idx_nodes_type ON nodes(type);
            CREATE INDEX IF NOT EXISTS idx_nodes_category ON nodes(category);
            CREATE INDEX IF NOT EXISTS idx_nodes_updated ON nodes(updated_at);
            CREATE INDEX IF NOT EXISTS idx_connections_source ON connections(source_node_id);
            CREATE INDEX IF NOT EXISTS idx_connections_target ON connections(target_node_id);
            CREATE INDEX IF NOT EXISTS idx_connections_owner ON connections(owner_id);
            CREATE INDEX IF NOT EXISTS idx_clusters_owner ON clusters(owner_id);
        """)

        self.conn.commit()

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @_guarded
    def add_node(self, node: KnowledgeNode) -> UUID:
        self.conn.execute("""
            INSERT INTO nodes (id, owner_id, title, body, type, source, author,
                               url, category, tags, importance_score,
                               access_count, neighbor_ids, created_at,
                               updated_at, last_accessed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(node.id),
            node.owner_id,
            node.title,
            node.body,
            node.type.value,
            node.source,
            node.author,
            node.url,
            node.category,
            json.dumps(node.tags),
            node.importance_score,
            node.access_count,
            json.dumps([str(n) for n in node.neighbor_ids]),
            node.created_at.isoformat(),
            node.updated_at.isoformat(),
            node.last_accessed_at.isoformat() if node.last_accessed_at else None,
        ))
        self.conn.commit()
        logger.debug("Stored node %s for %s", node.id, node.owner_id)
        return node.id

    @_guarded
    def get_node(self, node_id: UUID) -> Optional[KnowledgeNode]:
        row = self.conn.execute(
            "SELECT * FROM nodes WHERE id = ?",
            (str(node_id),)
        ).fetchone()
        return self._row_to_node(row) if row else None

    @_guarded
    def update_node(self, node: KnowledgeNode) -> bool:
        cursor = self.conn.execute("""
            UPDATE nodes SET
                title = ?, body = ?, type = ?, source = ?, author = ?, url = ?,
                category = ?, tags = ?, importance_score = ?, updated_at = ?
            WHERE id = ?
        """, (
            node.title,
            node.body,
            node.type.value,
            node.source,
            node.author,
            node.url,
            node.category,
            json.dumps(node.tags),
            node.importance_score,
            node.updated_at.isoformat(),
            str(node.id),
        ))
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def delete_node(self, node_id: UUID) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM nodes WHERE id = ?",
            (str(node_id),)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def record_access(self, node_id: UUID, when: datetime) -> bool:
        cursor = self.conn.execute("""
            UPDATE nodes SET access_count = access_count + 1, last_accessed_at = ?
            WHERE id = ?
        """, (when.isoformat(), str(node_id)))
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def set_neighbors(self, node_id: UUID, neighbor_ids: list[UUID]) -> bool:
        cursor = self.conn.execute(
            "UPDATE nodes SET neighbor_ids = ? WHERE id = ?",
            (json.dumps([str(n) for n in neighbor_ids]), str(node_id))
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def _node_where(
        self,
        owner_id: str,
        types=None,
        categories=None,
        tags=None,
        text=None,
        importance_min=None,
        since=None,
        until=None,
    ) -> tuple[str, list]:
        clauses = ["owner_id = ?"]
        params: list = [owner_id]

        types = [t.value for t in types or []]
        if types:
            clauses.append(f"type IN ({_placeholders(types)})")
            params.extend(types)

        categories = list(categories or [])
        if categories:
            clauses.append(f"category IN ({_placeholders(categories)})")
            params.extend(categories)

        tags = list(tags or [])
        if tags:
            # Overlap: any requested tag is present
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(nodes.tags) "
                f"WHERE json_each.value IN ({_placeholders(tags)}))"
            )
            params.extend(tags)

        if text:
            needle = text.lower()
            clauses.append(
                "(instr(py_lower(title), ?) > 0 OR instr(py_lower(body), ?) > 0)"
            )
            params.extend([needle, needle])

        if importance_min is not None:
            clauses.append("importance_score >= ?")
            params.append(importance_min)
        if since:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        if until:
            clauses.append("created_at <= ?")
            params.append(until.isoformat())

        return " AND ".join(clauses), params

    @_guarded
    def query_nodes(
        self,
        owner_id: str,
        types: Optional[Iterable[NodeType]] = None,
        categories: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        text: Optional[str] = None,
        importance_min: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[KnowledgeNode]:
        where, params = self._node_where(
            owner_id, types, categories, tags, text, importance_min, since, until
        )
        query = f"SELECT * FROM nodes WHERE {where} ORDER BY updated_at DESC, id"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_node(row) for row in rows]

    @_guarded
    def count_nodes(
        self,
        owner_id: str,
        types: Optional[Iterable[NodeType]] = None,
        categories: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        text: Optional[str] = None,
        importance_min: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> int:
        where, params = self._node_where(
            owner_id, types, categories, tags, text, importance_min, since, until
        )
        row = self.conn.execute(
            f"SELECT COUNT(*) AS n FROM nodes WHERE {where}", params
        ).fetchone()
        return row["n"]

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @_guarded
    def add_connection(self, connection: KnowledgeConnection) -> UUID:
        self.conn.execute("""
            INSERT INTO connections (id, owner_id, source_node_id, target_node_id,
                                     connection_type, strength, description,
                                     created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(connection.id),
            connection.owner_id,
            str(connection.source_node_id),
            str(connection.target_node_id),
            connection.connection_type.value,
            connection.strength,
            connection.description,
            connection.created_at.isoformat(),
        ))
        self.conn.commit()
        logger.debug(
            "Stored connection %s (%s -> %s)",
            connection.id, connection.source_node_id, connection.target_node_id,
        )
        return connection.id

    @_guarded
    def get_connection(self, connection_id: UUID) -> Optional[KnowledgeConnection]:
        row = self.conn.execute(
            "SELECT * FROM connections WHERE id = ?",
            (str(connection_id),)
        ).fetchone()
        return self._row_to_connection(row) if row else None

    @_guarded
    def update_connection(self, connection: KnowledgeConnection) -> bool:
        cursor = self.conn.execute("""
            UPDATE connections SET connection_type = ?, strength = ?, description = ?
            WHERE id = ?
        """, (
            connection.connection_type.value,
            connection.strength,
            connection.description,
            str(connection.id),
        ))
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def delete_connection(self, connection_id: UUID) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM connections WHERE id = ?",
            (str(connection_id),)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def get_connections(self, node_id: UUID) -> list[KnowledgeConnection]:
        node_str = str(node_id)
        rows = self.conn.execute("""
            SELECT * FROM connections
            WHERE source_node_id = ? OR target_node_id = ?
            ORDER BY strength DESC, created_at
        """, (node_str, node_str)).fetchall()
        return [self._row_to_connection(row) for row in rows]

    @_guarded
    def get_owner_connections(self, owner_id: str) -> list[KnowledgeConnection]:
        rows = self.conn.execute("""
            SELECT * FROM connections WHERE owner_id = ?
            ORDER BY strength DESC, created_at
        """, (owner_id,)).fetchall()
        return [self._row_to_connection(row) for row in rows]

    @_guarded
    def get_connections_among(self, node_ids: Iterable[UUID]) -> list[KnowledgeConnection]:
        ids = list(dict.fromkeys(str(n) for n in node_ids))
        if not ids:
            return []
        marks = _placeholders(ids)
        rows = self.conn.execute(f"""
            SELECT * FROM connections
            WHERE source_node_id IN ({marks}) AND target_node_id IN ({marks})
            ORDER BY strength DESC, created_at
        """, ids + ids).fetchall()
        return [self._row_to_connection(row) for row in rows]

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    @_guarded
    def add_cluster(self, cluster: KnowledgeCluster) -> UUID:
        self.conn.execute("""
            INSERT INTO clusters (id, owner_id, name, description, node_ids,
                                  center_node_id, coherence_score, tags,
                                  created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(cluster.id),
            cluster.owner_id,
            cluster.name,
            cluster.description,
            json.dumps([str(n) for n in cluster.node_ids]),
            str(cluster.center_node_id) if cluster.center_node_id else None,
            cluster.coherence_score,
            json.dumps(cluster.tags),
            cluster.created_at.isoformat(),
            cluster.updated_at.isoformat(),
        ))
        self.conn.commit()
        return cluster.id

    @_guarded
    def get_cluster(self, cluster_id: UUID) -> Optional[KnowledgeCluster]:
        row = self.conn.execute(
            "SELECT * FROM clusters WHERE id = ?",
            (str(cluster_id),)
        ).fetchone()
        return self._row_to_cluster(row) if row else None

    @_guarded
    def update_cluster(self, cluster: KnowledgeCluster) -> bool:
        cursor = self.conn.execute("""
            UPDATE clusters SET
                name = ?, description = ?, node_ids = ?, center_node_id = ?,
                coherence_score = ?, tags = ?, updated_at = ?
            WHERE id = ?
        """, (
            cluster.name,
            cluster.description,
            json.dumps([str(n) for n in cluster.node_ids]),
            str(cluster.center_node_id) if cluster.center_node_id else None,
            cluster.coherence_score,
            json.dumps(cluster.tags),
            cluster.updated_at.isoformat(),
            str(cluster.id),
        ))
        self.conn.commit()
        return cursor.rowcount > 0

    @_guarded
    def list_clusters(self, owner_id: str) -> list[KnowledgeCluster]:
        rows = self.conn.execute(
            "SELECT * FROM clusters WHERE owner_id = ? ORDER BY updated_at DESC, id",
            (owner_id,)
        ).fetchall()
        return [self._row_to_cluster(row) for row in rows]

    @_guarded
    def clusters_containing(self, node_id: UUID) -> list[KnowledgeCluster]:
        node_str = str(node_id)
        rows = self.conn.execute("""
            SELECT * FROM clusters
            WHERE center_node_id = ?
               OR EXISTS (SELECT 1 FROM json_each(clusters.node_ids)
                          WHERE json_each.value = ?)
        """, (node_str, node_str)).fetchall()
        return [self._row_to_cluster(row) for row in rows]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_node(self, row) -> KnowledgeNode:
        return KnowledgeNode(
            id=UUID(row['id']),
            owner_id=row['owner_id'],
            title=row['title'],
            body=row['body'],
            type=NodeType(row['type']),
            source=row['source'],
            author=row['author'],
            url=row['url'],
            category=row['category'],
            tags=json.loads(row['tags']) if row['tags'] else [],
            importance_score=row['importance_score'],
            access_count=row['access_count'],
            neighbor_ids=[UUID(n) for n in json.loads(row['neighbor_ids'] or "[]")],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at']),
            last_accessed_at=(
                datetime.fromisoformat(row['last_accessed_at'])
                if row['last_accessed_at'] else None
            ),
        )

    def _row_to_connection(self, row) -> KnowledgeConnection:
        return KnowledgeConnection(
            id=UUID(row['id']),
            owner_id=row['owner_id'],
            source_node_id=UUID(row['source_node_id']),
            target_node_id=UUID(row['target_node_id']),
            connection_type=ConnectionType(row['connection_type']),
            strength=row['strength'],
            description=row['description'],
            created_at=datetime.fromisoformat(row['created_at']),
        )

    def _row_to_cluster(self, row) -> KnowledgeCluster:
        return KnowledgeCluster(
            id=UUID(row['id']),
            owner_id=row['owner_id'],
            name=row['name'],
            description=row['description'],
            node_ids=[UUID(n) for n in json.loads(row['node_ids'])],
            center_node_id=UUID(row['center_node_id']) if row['center_node_id'] else None,
            coherence_score=row['coherence_score'],
            tags=json.loads(row['tags']) if row['tags'] else [],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at']),
        )
