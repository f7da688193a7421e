"""Search and graph traversal."""

from .search import SearchEngine
from .traversal import NeighborhoodExtractor

__all__ = ["SearchEngine", "NeighborhoodExtractor"]
