"""
Hybrid retrieval over a memory corpus.

The similarity collaborator supplies semantic scores; BM25 and relation-graph
proximity are computed locally and blended by ``utils.hybrid_search``.

Searches are scoped before ranking: project, memory type, tag and minimum
importance filters narrow the candidates, so BM25 document frequencies come
from the scoped set. Links still route through the whole corpus.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..config import Settings, settings as default_settings
from ..errors import CollaboratorError
from ..models.memory import Memory, ScoredMemory
from ..models.validators import normalize_tags
from ..storage.base import MemoryStore, SimilarityService
from ..utils.hybrid_search import expand_with_graph_neighbors, hybrid_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchFilters:
    """Corpus scope; unset fields match every memory."""

    project: str | None = None
    memory_types: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    min_importance: int | None = None

    def matches(self, memory: Memory) -> bool:
        if self.project is not None and memory.project != self.project:
            return False
        if self.memory_types and memory.memory_type not in self.memory_types:
            return False
        # Any listed tag is enough
        if self.tags and not self.tags.intersection(memory.tags):
            return False
        if self.min_importance is not None and memory.importance < self.min_importance:
            return False
        return True


class SearchService:
    """Ranks memories for a query with semantic + BM25 + graph signals."""

    def __init__(
        self,
        similarity: SimilarityService,
        store: MemoryStore | None = None,
        config: Settings | None = None,
    ):
        self.similarity = similarity
        self.store = store
        self.config = config or default_settings

    def build_filters(
        self,
        project: str | None = None,
        all_projects: bool = False,
        memory_types: Iterable[str] | None = None,
        tags: Iterable[str] | None = None,
        min_importance: int | None = None,
    ) -> SearchFilters:
        """Resolve search scope; without an explicit project the configured default applies."""
        if all_projects:
            project = None
        elif project is None:
            project = self.config.hybrid.default_project
        return SearchFilters(
            project=project,
            memory_types=frozenset(memory_types or ()),
            tags=frozenset(normalize_tags(tags if tags is None or isinstance(tags, str) else list(tags))),
            min_importance=min_importance,
        )

    async def _corpus(self, corpus: Sequence[Memory] | None) -> list[Memory]:
        limit = self.config.hybrid.max_candidates
        if corpus is None:
            if self.store is None:
                return []
            try:
                corpus = await self.store.list_memories(limit=limit)
            except Exception as e:
                raise CollaboratorError("list_memories", e) from e
        elif len(corpus) > limit:
            logger.warning("Search corpus of %d memories truncated to %d", len(corpus), limit)
        # Superseded memories are history, not answers
        return [m for m in list(corpus)[:limit] if m.superseded_by is None]

    async def _rank(
        self,
        query: str,
        memories: list[Memory],
        filters: SearchFilters,
        limit: int,
    ) -> tuple[list[ScoredMemory], list[Memory]]:
        if not query or not query.strip() or limit <= 0:
            return [], []

        scoped = [m for m in memories if filters.matches(m)]
        if not scoped:
            return [], []

        try:
            query_embedding = await self.similarity.embed(query)
            semantic = await self.similarity.score(query_embedding, scoped)
        except Exception as e:
            raise CollaboratorError("semantic_score", e) from e

        if len(semantic) != len(scoped):
            raise CollaboratorError(
                "semantic_score",
                detail=f"similarity service returned {len(semantic)} scores for {len(scoped)} memories",
            )

        results = hybrid_score(list(zip(scoped, semantic)), query, memories, self.config.hybrid)
        logger.debug("Hybrid search for %r ranked %d of %d memories", query, len(results), len(memories))
        return results[:limit], scoped

    async def search(
        self,
        query: str,
        corpus: Sequence[Memory] | None = None,
        limit: int = 10,
        *,
        project: str | None = None,
        all_projects: bool = False,
        memory_types: Iterable[str] | None = None,
        tags: Iterable[str] | None = None,
        min_importance: int | None = None,
    ) -> list[ScoredMemory]:
        """
        Search memories.

        Args:
            query: Free-text query; blank queries return no results
            corpus: Memories to rank; fetched from the store when None
            limit: Maximum number of results
            project: Only memories of this project; defaults to
                ``hybrid.default_project`` when that is set
            all_projects: Ignore both ``project`` and the configured default
            memory_types: Only memories of these types
            tags: Only memories carrying at least one of these tags
            min_importance: Only memories at or above this importance

        Returns:
            ScoredMemory list, best first, with per-signal sub-scores

        Raises:
            CollaboratorError: if the store or similarity service fails
        """
        if not query or not query.strip() or limit <= 0:
            return []
        filters = self.build_filters(project, all_projects, memory_types, tags, min_importance)
        results, _ = await self._rank(query, await self._corpus(corpus), filters, limit)
        return results

    async def search_with_neighbors(
        self,
        query: str,
        corpus: Sequence[Memory] | None = None,
        limit: int = 10,
        max_expansion: int = 5,
        **scope: object,
    ) -> tuple[list[ScoredMemory], list[Memory]]:
        """Search, then add directly linked in-scope memories that did not make the cut.

        ``scope`` takes the same filter keywords as ``search``.
        """
        filters = self.build_filters(**scope)
        results, scoped = await self._rank(query, await self._corpus(corpus), filters, limit)
        neighbors = expand_with_graph_neighbors([r.memory for r in results], scoped, max_expansion)
        return results, neighbors
