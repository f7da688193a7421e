"""
Auto-linking: connect a freshly written node to its look-alikes.

Every node write schedules ``AutoLinker.link_node``. The scan is O(n) in the
owner's node count, so by default it runs on a background worker and never
delays or fails the write that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from threading import Lock
from typing import Callable, Optional
from uuid import UUID

from ..connections import ConnectionStore
from ..core import AUTO_GENERATED_PREFIX, KnowledgeConnection, StorageBackend
from ..errors import SynthesisError
from .similarity import KeywordRelationClassifier, RelationClassifier, similarity

logger = logging.getLogger(__name__)

LINK_THRESHOLD = 0.3


def auto_description(score: float) -> str:
    return f"{AUTO_GENERATED_PREFIX} based on content similarity ({round(score * 100)}%)"


class AutoLinker:
    """
    Score a node against every sibling and connect the close ones.

    Existing connections are left alone, so writing the same node twice can
    leave two auto-generated edges between the same pair.
    """

    def __init__(
        self,
        storage: StorageBackend,
        connections: ConnectionStore,
        classifier: Optional[RelationClassifier] = None,
        threshold: float = LINK_THRESHOLD,
    ):
        self.storage = storage
        self.connections = connections
        self.classifier = classifier or KeywordRelationClassifier()
        self.threshold = threshold

    def link_node(self, node_id: UUID) -> list[KnowledgeConnection]:
        """Create connections from ``node_id`` to every similar sibling."""
        node = self.storage.get_node(node_id)
        if node is None:
            logger.debug("Skipping auto-link for vanished node %s", node_id)
            return []

        created = []
        candidates = self.storage.query_nodes(node.owner_id)
        for candidate in candidates:
            if candidate.id == node.id:
                continue

            try:
                score, relation = similarity(node, candidate, self.classifier)
                if score <= self.threshold:
                    continue
                connection = self.connections.create(
                    node.owner_id,
                    node.id,
                    candidate.id,
                    connection_type=relation,
                    strength=score,
                    description=auto_description(score),
                )
            except SynthesisError as e:
                logger.warning(
                    "Auto-link %s -> %s skipped: %s", node.id, candidate.id, e
                )
                continue
            except Exception:
                logger.warning(
                    "Auto-link %s -> %s failed", node.id, candidate.id, exc_info=True
                )
                continue
            created.append(connection)

        logger.debug(
            "Auto-linked node %s: %d of %d candidates",
            node.id, len(created), len(candidates) - 1,
        )
        return created


class LinkScheduler(ABC):
    """Decides when scheduled link jobs run."""

    @abstractmethod
    def submit(self, job: Callable[[], object]) -> None:
        """Queue a job. Must never raise the job's errors to the caller."""
        pass

    def wait(self) -> None:
        """Block until every submitted job has finished."""
        pass

    def shutdown(self) -> None:
        """Finish outstanding work and release resources."""
        pass

    @staticmethod
    def _run_safely(job: Callable[[], object]) -> None:
        try:
            job()
        except Exception:
            logger.exception("Auto-link job failed")


class InlineLinkScheduler(LinkScheduler):
    """Run jobs immediately in the caller's thread. Handy for tests."""

    def submit(self, job: Callable[[], object]) -> None:
        self._run_safely(job)


class BackgroundLinkScheduler(LinkScheduler):
    """Run jobs on a single worker thread, in submission order."""

    def __init__(self, max_workers: int = 1):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="autolink"
        )
        self._pending: set[Future] = set()
        self._lock = Lock()

    def submit(self, job: Callable[[], object]) -> None:
        future = self._executor.submit(self._run_safely, job)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait(self) -> None:
        with self._lock:
            pending = list(self._pending)
        wait_futures(pending)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
