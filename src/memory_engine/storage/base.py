"""
Collaborator contracts consumed by the engine.

The engine never talks to a database or an embedding model directly. It
depends on two async protocols:

* ``MemoryStore``: persistence (get / save / update / delete / supersede)
* ``SimilarityService``: semantic similarity over opaque embeddings

Implementations report failures by raising; the services translate them
into ``CollaboratorError`` at the boundary.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import numpy as np

from ..models.memory import Memory


@runtime_checkable
class MemoryStore(Protocol):
    """Persistence collaborator."""

    async def get(self, memory_id: str) -> Memory | None:
        """Fetch a memory by id, or None when absent."""

    async def save(self, memory: Memory) -> str:
        """Persist a new memory and return its id."""

    async def update(self, memory_id: str, fields: dict[str, Any]) -> None:
        """Apply a partial update to an existing memory."""

    async def delete(self, memory_id: str) -> None:
        """Remove a memory permanently."""

    async def supersede(self, old_id: str, new_id: str) -> None:
        """Mark ``old_id`` as replaced by ``new_id``; idempotent under retry."""

    async def list_memories(self, limit: int | None = None) -> list[Memory]:
        """Return up to ``limit`` memories (all when None)."""


@runtime_checkable
class SimilarityService(Protocol):
    """Semantic similarity collaborator; dimensionality and metric are opaque."""

    async def embed(self, text: str) -> Sequence[float]:
        """Embed text into a fixed-dimensionality vector."""

    async def score(self, query_embedding: Sequence[float], memories: Sequence[Memory]) -> list[float]:
        """Similarity in [0, 1] of each memory to the query, parallel to ``memories``."""

    async def pairwise(self, memories: Sequence[Memory]) -> np.ndarray:
        """Symmetric n×n similarity matrix in [0, 1] for ``memories``."""
