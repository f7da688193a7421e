"""Tests for the connection store and the neighbour cache."""

import pytest
from uuid import uuid4

from synthesis.connections import ConnectionStore
from synthesis.core import ConnectionPatch, ConnectionType, KnowledgeNode, SQLiteBackend
from synthesis.errors import NotFound, PermissionDenied, ValidationError


@pytest.fixture
def storage(tmp_path):
    """Create a temporary SQLite storage."""
    backend = SQLiteBackend(str(tmp_path / "test.db"))
    backend.initialize()
    yield backend
    backend.close()


@pytest.fixture
def store(storage):
    return ConnectionStore(storage)


@pytest.fixture
def nodes(storage):
    """Three of alice's nodes and one of bob's."""
    made = {}
    for key, owner in (("a", "alice"), ("b", "alice"), ("c", "alice"), ("bob", "bob")):
        node = KnowledgeNode(owner_id=owner, title=key, body=f"body of {key}")
        storage.add_node(node)
        made[key] = node
    return made


class TestCreate:

    def test_defaults(self, store, nodes):
        conn = store.create("alice", nodes["a"].id, nodes["b"].id)
        assert conn.connection_type == ConnectionType.RELATED
        assert conn.strength == 0.5
        assert conn.owner_id == "alice"

    def test_accepts_string_ids_and_type_values(self, store, nodes):
        conn = store.create(
            "alice", str(nodes["a"].id), str(nodes["b"].id),
            connection_type="supports", strength=0.8, description="  <b>yes</b> ",
        )
        assert conn.connection_type == ConnectionType.SUPPORTS
        assert conn.description == "byes/b"

    @pytest.mark.parametrize("given,stored", [(1.7, 1.0), (-0.2, 0.0), (0.3, 0.3)])
    def test_strength_is_clamped(self, store, nodes, given, stored):
        conn = store.create("alice", nodes["a"].id, nodes["b"].id, strength=given)
        assert conn.strength == stored

    def test_non_numeric_strength(self, store, nodes):
        with pytest.raises(ValidationError):
            store.create("alice", nodes["a"].id, nodes["b"].id, strength="strong")

    def test_self_loop(self, store, nodes):
        with pytest.raises(ValidationError):
            store.create("alice", nodes["a"].id, nodes["a"].id)

    def test_unknown_type(self, store, nodes):
        with pytest.raises(ValidationError):
            store.create("alice", nodes["a"].id, nodes["b"].id, connection_type="loves")

    def test_missing_endpoint(self, store, nodes):
        with pytest.raises(NotFound):
            store.create("alice", nodes["a"].id, uuid4())

    def test_foreign_endpoint(self, store, nodes):
        with pytest.raises(PermissionDenied):
            store.create("alice", nodes["a"].id, nodes["bob"].id)

    def test_updates_both_caches(self, store, storage, nodes):
        a, b = nodes["a"], nodes["b"]
        store.create("alice", a.id, b.id)
        store.create("alice", a.id, b.id)

        assert storage.get_node(a.id).neighbor_ids == [b.id]
        assert storage.get_node(b.id).neighbor_ids == [a.id]


class TestReadUpdateDelete:

    def test_list_is_strongest_first(self, store, nodes):
        weak = store.create("alice", nodes["a"].id, nodes["b"].id, strength=0.1)
        strong = store.create("alice", nodes["c"].id, nodes["a"].id, strength=0.9)
        assert [c.id for c in store.list("alice", nodes["a"].id)] == [strong.id, weak.id]

    def test_list_foreign_node(self, store, nodes):
        with pytest.raises(PermissionDenied):
            store.list("alice", nodes["bob"].id)

    def test_get_foreign(self, store, nodes):
        conn = store.create("alice", nodes["a"].id, nodes["b"].id)
        with pytest.raises(PermissionDenied):
            store.get("bob", conn.id)

    def test_update(self, store, nodes):
        conn = store.create("alice", nodes["a"].id, nodes["b"].id)
        updated = store.update(
            "alice", conn.id,
            ConnectionPatch(connection_type=ConnectionType.CONTRADICTS, strength=2),
        )
        assert updated.connection_type == ConnectionType.CONTRADICTS
        assert updated.strength == 1.0
        assert updated.source_node_id == nodes["a"].id
        assert store.get("alice", conn.id).strength == 1.0

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update("alice", uuid4(), ConnectionPatch(strength=0.1))

    def test_delete_refreshes_caches(self, store, storage, nodes):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        ab = store.create("alice", a.id, b.id)
        store.create("alice", a.id, c.id)

        store.delete("alice", ab.id)

        assert storage.get_node(a.id).neighbor_ids == [c.id]
        assert storage.get_node(b.id).neighbor_ids == []
        with pytest.raises(NotFound):
            store.get("alice", ab.id)

    def test_delete_keeps_neighbor_with_duplicate_edge(self, store, storage, nodes):
        a, b = nodes["a"], nodes["b"]
        first = store.create("alice", a.id, b.id)
        store.create("alice", b.id, a.id)

        store.delete("alice", first.id)
        assert storage.get_node(a.id).neighbor_ids == [b.id]

    def test_delete_foreign(self, store, nodes):
        conn = store.create("alice", nodes["a"].id, nodes["b"].id)
        with pytest.raises(PermissionDenied):
            store.delete("bob", conn.id)

    def test_delete_for_node(self, store, storage, nodes):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        store.create("alice", a.id, b.id)
        store.create("alice", c.id, a.id)
        store.create("alice", b.id, c.id)

        assert store.delete_for_node(a.id) == 2
        assert storage.get_node(b.id).neighbor_ids == [c.id]
        assert storage.get_node(c.id).neighbor_ids == [b.id]


class TestRebuildNeighborCache:

    def test_repairs_stale_cache(self, store, storage, nodes):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        store.create("alice", a.id, b.id)
        storage.set_neighbors(a.id, [c.id])
        storage.set_neighbors(c.id, [a.id, b.id])

        assert store.rebuild_neighbor_cache("alice") == 3

        assert storage.get_node(a.id).neighbor_ids == [b.id]
        assert storage.get_node(b.id).neighbor_ids == [a.id]
        assert storage.get_node(c.id).neighbor_ids == []

    def test_other_owners_untouched(self, store, storage, nodes):
        stale = [uuid4()]
        storage.set_neighbors(nodes["bob"].id, stale)
        store.rebuild_neighbor_cache("alice")
        assert storage.get_node(nodes["bob"].id).neighbor_ids == stale
