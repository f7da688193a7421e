"""
Lexical similarity between knowledge nodes.

This is a bag-of-words heuristic, not semantic understanding: two notes that
share long words and tags score high, paraphrases score low. The relation
type comes from keyword markers and will misfire on plenty of text ("but"
matches inside "attribute"). Both are accepted as good-enough signals for
suggesting links; swap in a different ``RelationClassifier`` for anything
smarter.
"""

import re
from typing import Protocol

from ..core import ConnectionType, KnowledgeNode

WORD_WEIGHT = 0.7
TAG_WEIGHT = 0.3
MIN_TOKEN_LENGTH = 4

_NON_WORD = re.compile(r"\W+")


def word_tokens(text: str) -> set[str]:
    """Lowercase words longer than three characters."""
    return {w for w in _NON_WORD.split(text.lower()) if len(w) >= MIN_TOKEN_LENGTH}


def word_similarity(text_a: str, text_b: str) -> float:
    words_a = word_tokens(text_a)
    words_b = word_tokens(text_b)
    if not words_a and not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def tag_similarity(tags_a, tags_b) -> float:
    set_a, set_b = set(tags_a), set(tags_b)
    return len(set_a & set_b) / max(len(set_a), len(set_b), 1)


class RelationClassifier(Protocol):
    """Decides what kind of relationship two bodies of text have."""

    def classify(self, text_a: str, text_b: str) -> ConnectionType:
        ...


class KeywordRelationClassifier:
    """
    Infer a relation from marker words found in either text.

    Markers are checked in priority order and the first hit wins. Matching
    is a plain case-insensitive substring test.
    """

    MARKERS: list[tuple[tuple[str, ...], ConnectionType]] = [
        (("however", "but"), ConnectionType.CONTRADICTS),
        (("supports", "confirms"), ConnectionType.SUPPORTS),
        (("example",), ConnectionType.EXAMPLE_OF),
        (("builds on",), ConnectionType.BUILDS_ON),
    ]

    def classify(self, text_a: str, text_b: str) -> ConnectionType:
        lowered = (text_a.lower(), text_b.lower())
        for markers, relation in self.MARKERS:
            if any(marker in text for marker in markers for text in lowered):
                return relation
        return ConnectionType.RELATED


def similarity(
    node_a: KnowledgeNode,
    node_b: KnowledgeNode,
    classifier: RelationClassifier = None,
) -> tuple[float, ConnectionType]:
    """
    Score how alike two nodes are and guess their relation.

    Returns:
        (score in [0, 1], relation type)
    """
    classifier = classifier or KeywordRelationClassifier()
    score = (
        WORD_WEIGHT * word_similarity(node_a.body, node_b.body)
        + TAG_WEIGHT * tag_similarity(node_a.tags, node_b.tags)
    )
    return score, classifier.classify(node_a.body, node_b.body)
