"""Tests for core knowledge models and storage."""

import pytest
from datetime import timedelta
from uuid import uuid4

from synthesis.core import (
    ConnectionType,
    KnowledgeCluster,
    KnowledgeConnection,
    KnowledgeNode,
    NodeType,
    Page,
    SQLiteBackend,
    utcnow,
)
from synthesis.errors import StoreError


@pytest.fixture
def storage(tmp_path):
    """Create a temporary SQLite storage."""
    db_path = tmp_path / "test.db"
    backend = SQLiteBackend(str(db_path))
    backend.initialize()
    yield backend
    backend.close()


def make_node(owner="alice", title="Title", body="Body text", **kwargs):
    return KnowledgeNode(owner_id=owner, title=title, body=body, **kwargs)


class TestKnowledgeNode:
    """Tests for KnowledgeNode dataclass."""

    def test_create_minimal(self):
        node = KnowledgeNode(owner_id="alice", title="Deep Work", body="Focus")
        assert node.id is not None
        assert node.type == NodeType.NOTE
        assert node.importance_score == 5
        assert node.access_count == 0
        assert node.neighbor_ids == []

    def test_last_accessed_defaults_to_created(self):
        node = make_node()
        assert node.last_accessed_at == node.created_at

    def test_tags_are_deduplicated(self):
        node = make_node(tags=["focus", " focus ", "", "work", "focus"])
        assert node.tags == ["focus", "work"]


class TestKnowledgeConnection:

    def test_other_end(self):
        a, b = uuid4(), uuid4()
        conn = KnowledgeConnection(source_node_id=a, target_node_id=b)
        assert conn.other_end(a) == b
        assert conn.other_end(b) == a

    def test_is_auto_generated(self):
        auto = KnowledgeConnection(description="Auto-generated based on content similarity (42%)")
        manual = KnowledgeConnection(description="I linked these")
        assert auto.is_auto_generated
        assert not manual.is_auto_generated
        assert not KnowledgeConnection().is_auto_generated


class TestPage:

    def test_total_pages(self):
        assert Page(total=41, limit=20).total_pages == 3
        assert Page(total=0, limit=20).total_pages == 0

    def test_has_more(self):
        assert Page(total=41, page=2, limit=20).has_more
        assert not Page(total=41, page=3, limit=20).has_more


class TestSQLiteBackend:
    """Tests for SQLite storage backend."""

    def test_add_and_get_node(self, storage):
        node = make_node(title="Deep Work", tags=["focus"], url="https://example.com")
        node_id = storage.add_node(node)

        retrieved = storage.get_node(node_id)
        assert retrieved is not None
        assert retrieved.title == "Deep Work"
        assert retrieved.tags == ["focus"]
        assert retrieved.url == "https://example.com"
        assert retrieved.created_at == node.created_at

    def test_get_missing_node(self, storage):
        assert storage.get_node(uuid4()) is None

    def test_update_node(self, storage):
        node = make_node(title="Original")
        storage.add_node(node)

        node.title = "Updated"
        assert storage.update_node(node)
        assert storage.get_node(node.id).title == "Updated"

    def test_update_node_leaves_cache_and_counters(self, storage):
        node = make_node()
        storage.add_node(node)
        neighbor = uuid4()
        storage.set_neighbors(node.id, [neighbor])
        storage.record_access(node.id, node.created_at + timedelta(minutes=1))

        # Stale copy from before the cache and counter writes
        node.title = "Renamed"
        storage.update_node(node)

        retrieved = storage.get_node(node.id)
        assert retrieved.title == "Renamed"
        assert retrieved.neighbor_ids == [neighbor]
        assert retrieved.access_count == 1

    def test_delete_node(self, storage):
        node = make_node()
        storage.add_node(node)
        assert storage.delete_node(node.id)
        assert storage.get_node(node.id) is None
        assert not storage.delete_node(node.id)

    def test_record_access(self, storage):
        node = make_node()
        storage.add_node(node)
        later = node.created_at + timedelta(minutes=5)

        storage.record_access(node.id, later)
        storage.record_access(node.id, later)

        retrieved = storage.get_node(node.id)
        assert retrieved.access_count == 2
        assert retrieved.last_accessed_at == later

    def test_set_neighbors(self, storage):
        node = make_node()
        storage.add_node(node)
        neighbors = [uuid4(), uuid4()]
        storage.set_neighbors(node.id, neighbors)
        assert storage.get_node(node.id).neighbor_ids == neighbors

    def test_query_scoped_by_owner(self, storage):
        storage.add_node(make_node(owner="alice"))
        storage.add_node(make_node(owner="bob"))
        assert len(storage.query_nodes("alice")) == 1
        assert storage.count_nodes("bob") == 1

    def test_query_filters(self, storage):
        storage.add_node(make_node(title="Deep Work", type=NodeType.BOOK, tags=["focus"], importance_score=9))
        storage.add_node(make_node(title="Flow", category="psychology", tags=["flow"]))
        storage.add_node(make_node(title="Groceries", body="Milk and eggs", importance_score=2))

        assert [n.title for n in storage.query_nodes("alice", types=[NodeType.BOOK])] == ["Deep Work"]
        assert [n.title for n in storage.query_nodes("alice", categories=["psychology"])] == ["Flow"]
        assert len(storage.query_nodes("alice", tags=["focus", "flow"])) == 2
        assert [n.title for n in storage.query_nodes("alice", importance_min=8)] == ["Deep Work"]
        assert [n.title for n in storage.query_nodes("alice", text="EGGS")] == ["Groceries"]

    def test_text_filter_folds_unicode(self, storage):
        storage.add_node(make_node(title="Über Fokus"))
        assert len(storage.query_nodes("alice", text="über")) == 1

    def test_query_date_range(self, storage):
        now = utcnow()
        old = make_node(title="Old", created_at=now - timedelta(days=10))
        new = make_node(title="New", created_at=now)
        storage.add_node(old)
        storage.add_node(new)

        recent = storage.query_nodes("alice", since=now - timedelta(days=1))
        assert [n.title for n in recent] == ["New"]
        early = storage.query_nodes("alice", until=now - timedelta(days=1))
        assert [n.title for n in early] == ["Old"]

    def test_query_orders_by_update_and_pages(self, storage):
        now = utcnow()
        for i in range(5):
            storage.add_node(make_node(title=f"n{i}", updated_at=now + timedelta(seconds=i)))

        first = storage.query_nodes("alice", offset=0, limit=2)
        second = storage.query_nodes("alice", offset=2, limit=2)
        assert [n.title for n in first] == ["n4", "n3"]
        assert [n.title for n in second] == ["n2", "n1"]

    def test_connections(self, storage):
        a, b, c = make_node(), make_node(), make_node()
        for n in (a, b, c):
            storage.add_node(n)
        weak = KnowledgeConnection(owner_id="alice", source_node_id=a.id, target_node_id=b.id, strength=0.2)
        strong = KnowledgeConnection(owner_id="alice", source_node_id=c.id, target_node_id=a.id, strength=0.9)
        storage.add_connection(weak)
        storage.add_connection(strong)

        # Either endpoint, strongest first
        assert [e.id for e in storage.get_connections(a.id)] == [strong.id, weak.id]
        assert [e.id for e in storage.get_connections(b.id)] == [weak.id]
        assert [e.id for e in storage.get_connections_among([a.id, b.id])] == [weak.id]
        assert len(storage.get_owner_connections("alice")) == 2

    def test_update_connection(self, storage):
        a, b = make_node(), make_node()
        storage.add_node(a)
        storage.add_node(b)
        conn = KnowledgeConnection(owner_id="alice", source_node_id=a.id, target_node_id=b.id)
        storage.add_connection(conn)

        conn.connection_type = ConnectionType.SUPPORTS
        conn.strength = 0.8
        assert storage.update_connection(conn)

        retrieved = storage.get_connection(conn.id)
        assert retrieved.connection_type == ConnectionType.SUPPORTS
        assert retrieved.strength == 0.8

    def test_deleting_node_cascades_connections(self, storage):
        a, b = make_node(), make_node()
        storage.add_node(a)
        storage.add_node(b)
        storage.add_connection(KnowledgeConnection(owner_id="alice", source_node_id=a.id, target_node_id=b.id))

        storage.delete_node(a.id)
        assert storage.get_connections(b.id) == []

    def test_self_loop_rejected_by_schema(self, storage):
        a = make_node()
        storage.add_node(a)
        with pytest.raises(StoreError) as exc_info:
            storage.add_connection(KnowledgeConnection(owner_id="alice", source_node_id=a.id, target_node_id=a.id))
        assert exc_info.value.__cause__ is not None

    def test_out_of_range_strength_rejected_by_schema(self, storage):
        a, b = make_node(), make_node()
        storage.add_node(a)
        storage.add_node(b)
        with pytest.raises(StoreError):
            storage.add_connection(KnowledgeConnection(
                owner_id="alice", source_node_id=a.id, target_node_id=b.id, strength=1.5,
            ))

    def test_clusters(self, storage):
        a, b = make_node(), make_node()
        storage.add_node(a)
        storage.add_node(b)
        cluster = KnowledgeCluster(
            owner_id="alice", name="Focus", node_ids=[a.id, b.id],
            center_node_id=a.id, coherence_score=0.5, tags=["focus"],
        )
        storage.add_cluster(cluster)

        retrieved = storage.get_cluster(cluster.id)
        assert retrieved.node_ids == [a.id, b.id]
        assert retrieved.center_node_id == a.id
        assert [c.id for c in storage.list_clusters("alice")] == [cluster.id]
        assert storage.list_clusters("bob") == []
        assert [c.id for c in storage.clusters_containing(b.id)] == [cluster.id]
        assert storage.clusters_containing(uuid4()) == []
