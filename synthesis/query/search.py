"""
Lexical search over an owner's knowledge nodes.

Candidates must contain the raw query somewhere in their title or body;
they are then ranked by how many query words they contain, nudged by
importance and usage.
"""

import logging
import math
import re
from datetime import datetime
from typing import Optional

from ..core import (
    KnowledgeNode,
    NodeType,
    SearchOptions,
    SearchResult,
    StorageBackend,
    normalize_tags,
)
from ..errors import ValidationError
from ..validation import coerce_enum

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 3
BODY_WEIGHT = 1
IMPORTANCE_WEIGHT = 0.1
USAGE_WEIGHT = 0.1

SNIPPET_LENGTH = 200
SNIPPET_LEAD = 50
ELLIPSIS = "…"

_NON_WORD = re.compile(r"\W+")


def query_tokens(query: str) -> list[str]:
    """Lowercase words longer than three characters, first occurrence order."""
    words = [w for w in _NON_WORD.split(query.lower()) if len(w) > 3]
    return list(dict.fromkeys(words))


def relevance_score(node: KnowledgeNode, tokens: list[str]) -> float:
    title = node.title.lower()
    body = node.body.lower()
    score = 0.0
    for token in tokens:
        if token in title:
            score += TITLE_WEIGHT
        if token in body:
            score += BODY_WEIGHT
    score += node.importance_score * IMPORTANCE_WEIGHT
    score += math.log(node.access_count + 1) * USAGE_WEIGHT
    return score


def make_snippet(body: str, tokens: list[str], max_length: int = SNIPPET_LENGTH) -> str:
    """
    Cut a window of the body around the earliest query word.

    The window starts ``SNIPPET_LEAD`` characters before the hit. Without a
    hit, the body's opening is used.
    """
    # Match against the body itself; lower() can change the string length
    matches = (re.search(re.escape(t), body, re.IGNORECASE) for t in tokens)
    hits = [m.start() for m in matches if m]

    if not hits:
        return body[:max_length] + (ELLIPSIS if len(body) > max_length else "")

    start = max(0, min(hits) - SNIPPET_LEAD)
    end = min(len(body), start + max_length)
    snippet = body[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(body):
        snippet = snippet + ELLIPSIS
    return snippet


def highlighted_terms(node: KnowledgeNode, tokens: list[str]) -> list[str]:
    title = node.title.lower()
    body = node.body.lower()
    return [t for t in tokens if t in title or t in body]


class SearchEngine:
    """Rank an owner's nodes against a free-text query."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def search(
        self,
        requester: str,
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> list[SearchResult]:
        """
        Search the requester's nodes.

        Args:
            requester: Owner whose nodes are searched
            query: Free text; must contain something besides whitespace
            options: Type/category/tag narrowing and a result limit

        Returns:
            SearchResults, best first, at most ``options.limit`` of them
        """
        options = options or SearchOptions()
        if not query or not query.strip():
            raise ValidationError("Search query is required", details={"field": "query"})
        if options.limit < 1:
            raise ValidationError("limit must be positive", details={"limit": options.limit})

        query = query.strip()
        candidates = self.storage.query_nodes(
            requester,
            types=[coerce_enum(NodeType, t, "types") for t in options.types or []],
            categories=options.categories,
            tags=normalize_tags(options.tags),
            text=query,
        )

        tokens = query_tokens(query)
        results = [
            SearchResult(
                node=node,
                relevance_score=relevance_score(node, tokens),
                snippet=make_snippet(node.body, tokens),
                highlighted_terms=highlighted_terms(node, tokens),
            )
            for node in candidates
        ]

        # Two stable passes: recency breaks ties in relevance
        results.sort(key=lambda r: r.node.last_accessed_at or datetime.min, reverse=True)
        results.sort(key=lambda r: r.relevance_score, reverse=True)

        logger.debug("Search %r matched %d nodes", query, len(results))
        return results[:options.limit]
