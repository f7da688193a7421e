"""Similarity scoring and automatic link generation."""

from .similarity import (
    KeywordRelationClassifier,
    RelationClassifier,
    similarity,
    tag_similarity,
    word_similarity,
    word_tokens,
)
from .autolinker import (
    LINK_THRESHOLD,
    AutoLinker,
    BackgroundLinkScheduler,
    InlineLinkScheduler,
    LinkScheduler,
)

__all__ = [
    "KeywordRelationClassifier",
    "RelationClassifier",
    "similarity",
    "tag_similarity",
    "word_similarity",
    "word_tokens",
    "LINK_THRESHOLD",
    "AutoLinker",
    "BackgroundLinkScheduler",
    "InlineLinkScheduler",
    "LinkScheduler",
]
