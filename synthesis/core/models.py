"""
Core data models for the knowledge synthesis graph.

Knowledge nodes with typed, weighted connections and scored clusters.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4


# Descriptions of connections written by the auto-linker start with this.
AUTO_GENERATED_PREFIX = "Auto-generated"

DEFAULT_SEARCH_LIMIT = 50


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_tags(tags) -> list[str]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    seen = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class NodeType(Enum):
    """Kinds of captured knowledge."""

    NOTE = "note"
    ARTICLE = "article"
    BOOK = "book"
    VIDEO = "video"
    PODCAST = "podcast"
    IDEA = "idea"
    QUOTE = "quote"


class ConnectionType(Enum):
    """Relationship types between knowledge nodes."""

    RELATED = "related"          # General association
    SUPPORTS = "supports"        # X reinforces Y
    CONTRADICTS = "contradicts"  # X conflicts with Y
    EXAMPLE_OF = "example_of"    # X illustrates Y
    BUILDS_ON = "builds_on"      # X extends Y


@dataclass
class KnowledgeNode:
    """
    A single unit of captured knowledge.

    Attributes:
        id: Unique identifier
        owner_id: User who owns the node (never changes)
        title: Short name of the entry
        body: The captured content
        type: Kind of knowledge

        # Provenance
        source: Where it came from (optional)
        author: Who wrote it (optional)
        url: Link to the original (optional, must be a valid URI)

        # Classification
        category: Free-form grouping
        tags: Searchable labels, unique

        # Usage
        importance_score: 1-10
        access_count: Number of direct reads

        # Derived
        neighbor_ids: Cached adjacency, rebuildable from connections

        # Timestamps
        created_at: When the node was stored
        updated_at: Last modification
        last_accessed_at: Last direct read
    """

    # Identity
    id: UUID = field(default_factory=uuid4)
    owner_id: str = ""

    # Content
    title: str = ""
    body: str = ""
    type: NodeType = NodeType.NOTE
    source: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None

    # Classification
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    # Usage
    importance_score: int = 5
    access_count: int = 0

    # Derived
    neighbor_ids: list[UUID] = field(default_factory=list)

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None

    def __post_init__(self):
        self.tags = normalize_tags(self.tags)
        if self.last_accessed_at is None:
            self.last_accessed_at = self.created_at


@dataclass
class KnowledgeConnection:
    """
    A typed, weighted edge between two nodes of the same owner.

    Stored with a direction but read from either endpoint.
    """

    id: UUID = field(default_factory=uuid4)
    owner_id: str = ""
    source_node_id: UUID = field(default_factory=uuid4)
    target_node_id: UUID = field(default_factory=uuid4)
    connection_type: ConnectionType = ConnectionType.RELATED
    strength: float = 0.5
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_auto_generated(self) -> bool:
        return bool(self.description) and self.description.startswith(AUTO_GENERATED_PREFIX)

    def other_end(self, node_id: UUID) -> UUID:
        """The endpoint that is not ``node_id``."""
        return self.target_node_id if self.source_node_id == node_id else self.source_node_id


@dataclass
class KnowledgeCluster:
    """A named group of nodes with a coherence snapshot."""

    id: UUID = field(default_factory=uuid4)
    owner_id: str = ""
    name: str = ""
    description: Optional[str] = None
    node_ids: list[UUID] = field(default_factory=list)
    center_node_id: Optional[UUID] = None
    coherence_score: float = 0.0
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class NodeFilters:
    """Filters accepted when listing nodes. Unset fields don't filter."""

    type: Optional[NodeType] = None
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)  # match any
    text: Optional[str] = None  # substring of title or body
    importance_min: Optional[int] = None
    created_since: Optional[datetime] = None
    created_until: Optional[datetime] = None


@dataclass
class SearchOptions:
    """Narrowing options for a search query."""

    types: list[NodeType] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    limit: int = DEFAULT_SEARCH_LIMIT


@dataclass
class NodePatch:
    """Partial node update. ``None`` leaves a field unchanged."""

    title: Optional[str] = None
    body: Optional[str] = None
    type: Optional[NodeType] = None
    source: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[list[str]] = None
    importance_score: Optional[int] = None


@dataclass
class ConnectionPatch:
    """Partial connection update. ``None`` leaves a field unchanged."""

    connection_type: Optional[ConnectionType] = None
    strength: Optional[float] = None
    description: Optional[str] = None


@dataclass
class SearchResult:
    """A ranked search hit."""

    node: KnowledgeNode
    relevance_score: float = 0.0
    snippet: str = ""
    highlighted_terms: list[str] = field(default_factory=list)


@dataclass
class RelatedNode:
    """A directly connected neighbour and the edge that links it."""

    node: KnowledgeNode
    connection_strength: float = 0.0
    connection_type: ConnectionType = ConnectionType.RELATED


@dataclass
class KnowledgeGraph:
    """Nodes and connections for a graph view."""

    nodes: list[KnowledgeNode] = field(default_factory=list)
    connections: list[KnowledgeConnection] = field(default_factory=list)
    center_node_id: Optional[UUID] = None


@dataclass
class Page:
    """One page of a paginated listing."""

    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages
