"""Tests for automatic link generation and its schedulers."""

import logging
import threading

import pytest

from synthesis import KnowledgeSynthesis
from synthesis.core import ConnectionType, SQLiteBackend
from synthesis.errors import StoreError
from synthesis.linking import BackgroundLinkScheduler, InlineLinkScheduler
from synthesis.linking.autolinker import auto_description


@pytest.fixture
def kb(tmp_path):
    """Knowledge graph that links inline, in the writer's thread."""
    service = KnowledgeSynthesis(str(tmp_path / "test.db"), scheduler=InlineLinkScheduler())
    yield service
    service.close()


def add_deep_work(kb, owner="alice"):
    return kb.create_node(
        owner, title="Deep Work", body="Focus work deep sessions",
        tags=["focus", "productivity"],
    )


def add_flow(kb, owner="alice"):
    return kb.create_node(
        owner, title="Flow", body="Focus state", tags=["focus", "psychology"],
    )


class TestAutoLinker:

    def test_similar_nodes_are_linked(self, kb):
        deep_work = add_deep_work(kb)
        flow = add_flow(kb)

        edges = kb.list_connections("alice", flow.id)
        assert len(edges) == 1
        edge = edges[0]
        assert edge.source_node_id == flow.id
        assert edge.target_node_id == deep_work.id
        assert edge.connection_type == ConnectionType.RELATED
        assert edge.strength == pytest.approx(0.325)
        assert edge.description.startswith("Auto-generated based on content similarity (")
        assert edge.is_auto_generated

    def test_reading_notes_scenario(self, kb):
        deep_work = kb.create_node(
            "alice", title="Deep Work", body="Cal Newport on focus and depth",
            tags=["focus", "productivity"],
        )
        flow_state = kb.create_node(
            "alice", title="Flow State",
            body="Csikszentmihalyi on focus and optimal experience",
            tags=["focus", "psychology"],
        )

        (edge,) = kb.list_connections("alice", deep_work.id)
        assert edge.other_end(deep_work.id) == flow_state.id
        assert edge.connection_type == ConnectionType.RELATED
        assert edge.strength > 0.3
        assert edge.is_auto_generated

    def test_caches_updated(self, kb):
        deep_work = add_deep_work(kb)
        flow = add_flow(kb)
        assert kb.storage.get_node(deep_work.id).neighbor_ids == [flow.id]
        assert kb.storage.get_node(flow.id).neighbor_ids == [deep_work.id]

    def test_dissimilar_nodes_are_not_linked(self, kb):
        add_deep_work(kb)
        groceries = kb.create_node("alice", title="Groceries", body="Milk eggs bread")
        assert kb.list_connections("alice", groceries.id) == []

    def test_at_threshold_is_not_linked(self, kb):
        # Tag similarity 1.0 alone scores exactly 0.3
        kb.create_node("alice", title="a", body="alpha", tags=["x"])
        second = kb.create_node("alice", title="b", body="omega", tags=["x"])
        assert kb.list_connections("alice", second.id) == []

    def test_other_owners_are_not_candidates(self, kb):
        add_deep_work(kb, owner="bob")
        flow = add_flow(kb)
        assert kb.list_connections("alice", flow.id) == []

    def test_relation_from_markers(self, kb):
        kb.create_node("alice", title="a", body="Meditation improves focus", tags=["focus"])
        second = kb.create_node(
            "alice", title="b", body="Research confirms meditation improves focus", tags=["focus"],
        )
        (edge,) = kb.list_connections("alice", second.id)
        assert edge.connection_type == ConnectionType.SUPPORTS

    def test_relink_on_update_duplicates_edges(self, kb):
        deep_work = add_deep_work(kb)
        flow = add_flow(kb)

        kb.update_node("alice", flow.id, body="Focus state of deep immersion")

        edges = kb.list_connections("alice", deep_work.id)
        assert len(edges) == 2
        assert all(e.is_auto_generated for e in edges)
        assert kb.storage.get_node(deep_work.id).neighbor_ids == [flow.id]

    def test_failed_candidate_is_skipped(self, kb, monkeypatch, caplog):
        deep_work = add_deep_work(kb)
        other = kb.create_node("alice", title="Focus", body="Focus work deep", tags=["focus"])
        original = kb.connections.create

        def flaky(requester, source_id, target_id, **kwargs):
            if target_id == deep_work.id:
                raise StoreError("disk full")
            return original(requester, source_id, target_id, **kwargs)

        monkeypatch.setattr(kb.connections, "create", flaky)
        with caplog.at_level(logging.WARNING, logger="synthesis.linking.autolinker"):
            flow = add_flow(kb)

        targets = {e.other_end(flow.id) for e in kb.list_connections("alice", flow.id)}
        assert targets == {other.id}
        assert "disk full" in caplog.text

    def test_failing_classifier_skips_one_candidate(self, tmp_path, caplog):
        class Picky:
            def classify(self, text_a, text_b):
                if "sessions" in text_a or "sessions" in text_b:
                    raise RuntimeError("cannot classify")
                return ConnectionType.BUILDS_ON

        with KnowledgeSynthesis(
            str(tmp_path / "picky.db"), scheduler=InlineLinkScheduler(), classifier=Picky(),
        ) as picky_kb:
            add_deep_work(picky_kb)
            other = picky_kb.create_node(
                "alice", title="Focus", body="Focus state deep", tags=["focus"],
            )
            with caplog.at_level(logging.WARNING, logger="synthesis.linking.autolinker"):
                flow = add_flow(picky_kb)

            edges = picky_kb.list_connections("alice", flow.id)
            assert [e.other_end(flow.id) for e in edges] == [other.id]
            assert edges[0].connection_type == ConnectionType.BUILDS_ON
            assert "cannot classify" in caplog.text

    def test_crashing_job_does_not_fail_write(self, kb, monkeypatch):
        def boom(node_id):
            raise RuntimeError("linker crashed")

        monkeypatch.setattr(kb.linker, "link_node", boom)
        node = add_flow(kb)
        assert kb.get_node("alice", node.id).title == "Flow"

    def test_vanished_node(self, kb):
        node = add_flow(kb)
        kb.delete_node("alice", node.id)
        assert kb.linker.link_node(node.id) == []


def test_auto_description_rounds():
    assert auto_description(0.42) == "Auto-generated based on content similarity (42%)"
    assert auto_description(1.0) == "Auto-generated based on content similarity (100%)"


class TestBackgroundLinkScheduler:

    def test_runs_off_thread(self):
        scheduler = BackgroundLinkScheduler()
        seen = []
        scheduler.submit(lambda: seen.append(threading.current_thread().name))
        scheduler.wait()
        scheduler.shutdown()
        assert len(seen) == 1
        assert seen[0].startswith("autolink")

    def test_swallows_job_errors(self, caplog):
        scheduler = BackgroundLinkScheduler()

        def fail():
            raise RuntimeError("nope")

        scheduler.submit(fail)
        scheduler.wait()
        scheduler.shutdown()
        assert "Auto-link job failed" in caplog.text

    def test_service_links_in_background(self, tmp_path):
        with KnowledgeSynthesis(str(tmp_path / "bg.db")) as kb:
            deep_work = add_deep_work(kb)
            kb.wait_for_links()
            flow = add_flow(kb)
            kb.wait_for_links()
            assert [e.other_end(flow.id) for e in kb.list_connections("alice", flow.id)] == [deep_work.id]

    def test_close_drains_pending_links(self, tmp_path):
        db = str(tmp_path / "drain.db")
        with KnowledgeSynthesis(db) as kb:
            add_deep_work(kb)
            kb.wait_for_links()
            flow = add_flow(kb)

        storage = SQLiteBackend(db)
        storage.initialize()
        try:
            assert len(storage.get_connections(flow.id)) == 1
        finally:
            storage.close()
