"""Collaborator contracts and reference implementations."""

from .base import MemoryStore, SimilarityService
from .memory_store import InMemoryMemoryStore, MemoryNotFoundError
from .similarity import EmbeddingSimilarityService, TextOverlapSimilarityService

__all__ = [
    "EmbeddingSimilarityService",
    "InMemoryMemoryStore",
    "MemoryNotFoundError",
    "MemoryStore",
    "SimilarityService",
    "TextOverlapSimilarityService",
]
