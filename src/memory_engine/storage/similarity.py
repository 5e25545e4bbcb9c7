"""
Similarity collaborators.

``EmbeddingSimilarityService`` wraps any async ``embed(text)`` callable (a
sentence-transformers model, a remote embedding API, a test stub) and does
the cosine arithmetic with numpy. Embeddings are cached per memory id for
the lifetime of the service.

``TextOverlapSimilarityService`` needs no model at all: it scores word
overlap (Jaccard). The CLI falls back to it when no embedder is configured.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

import numpy as np

from ..models.memory import Memory
from ..utils.bm25 import tokenize
from ..utils.deduplication import text_similarity


EmbedFn = Callable[[str], Awaitable[Sequence[float]]]


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return matrix / norms


class EmbeddingSimilarityService:
    """Cosine similarity over embeddings from an injected embedder, clipped to [0, 1]."""

    def __init__(self, embed_fn: EmbedFn):
        self._embed_fn = embed_fn
        self._cache: dict[str, np.ndarray] = {}

    async def embed(self, text: str) -> Sequence[float]:
        return await self._embed_fn(text)

    async def _memory_matrix(self, memories: Sequence[Memory]) -> np.ndarray:
        rows = []
        for memory in memories:
            vector = self._cache.get(memory.id)
            if vector is None:
                vector = np.asarray(await self._embed_fn(memory.content), dtype=np.float64)
                self._cache[memory.id] = vector
            rows.append(vector)
        return np.vstack(rows)

    async def score(self, query_embedding: Sequence[float], memories: Sequence[Memory]) -> list[float]:
        if not memories:
            return []
        matrix = _normalize_rows(await self._memory_matrix(memories))
        query = np.asarray(query_embedding, dtype=np.float64)
        if query.shape[0] != matrix.shape[1]:
            raise ValueError(f"Vector dimension mismatch: {query.shape[0]} vs {matrix.shape[1]}")
        norm = np.linalg.norm(query)
        if norm == 0.0:
            return [0.0] * len(memories)
        return np.clip(matrix @ (query / norm), 0.0, 1.0).tolist()

    async def pairwise(self, memories: Sequence[Memory]) -> np.ndarray:
        if not memories:
            return np.zeros((0, 0))
        matrix = _normalize_rows(await self._memory_matrix(memories))
        return np.clip(matrix @ matrix.T, 0.0, 1.0)

    def forget(self, memory_id: str) -> None:
        """Drop a cached embedding (after an update to the memory's content)."""
        self._cache.pop(memory_id, None)


class TextOverlapSimilarityService:
    """Model-free similarity: query term coverage and pairwise Jaccard word overlap.

    The "embedding" is the sorted set of BM25 terms, which keeps the
    collaborator contract without any vector model.
    """

    async def embed(self, text: str) -> Sequence[str]:
        return sorted(set(tokenize(text)))

    async def score(self, query_embedding: Sequence[str], memories: Sequence[Memory]) -> list[float]:
        query_terms = set(query_embedding)
        if not query_terms:
            return [0.0] * len(memories)
        return [len(query_terms & set(tokenize(m.content))) / len(query_terms) for m in memories]

    async def pairwise(self, memories: Sequence[Memory]) -> np.ndarray:
        n = len(memories)
        matrix = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                matrix[i, j] = matrix[j, i] = text_similarity(memories[i].content, memories[j].content)
        return matrix
