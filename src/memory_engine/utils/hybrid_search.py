"""
Hybrid ranking: semantic similarity + BM25 + relation-graph proximity.

Formula (weights renormalised to sum to 1):

    score = w_sem * clamp(semantic, 0, 1)
          + w_bm25 * bm25 / max(bm25 over candidates)
          + w_graph * graph_boost(hop distance from seeds)

Semantic scores come from the similarity collaborator; this module never
computes embeddings. Results are sorted descending by combined score with
a stable sort, so ties keep the caller's input order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from ..config import HybridSearchSettings
from ..models.memory import Memory, ScoredMemory
from .bm25 import BM25Params, normalize_scores, rank_with_bm25
from .relation_graph import build_graph, neighbors_within, traverse_graph


def graph_distance_boost(distance: int | None, max_distance: int = 2, max_boost: float = 0.3) -> float:
    """Boost for a node ``distance`` hops from the seeds.

    Seeds themselves (distance 0), unreachable nodes, and nodes past
    ``max_distance`` get nothing; otherwise the boost falls off as
    ``max_boost / distance``.
    """
    if distance is None or distance <= 0 or distance > max_distance:
        return 0.0
    return max_boost / distance


def _unit(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def select_seeds(candidates: Sequence[tuple[Memory, float]], seed_count: int) -> list[str]:
    """Ids of the top ``seed_count`` candidates by semantic score (stable on ties)."""
    ranked = sorted(candidates, key=lambda item: -_unit(item[1]))
    return [memory.id for memory, _ in ranked[: max(0, seed_count)]]


def hybrid_score(
    candidates: Sequence[tuple[Memory, float]],
    query: str,
    corpus: Sequence[Memory] | None = None,
    config: HybridSearchSettings | None = None,
    seed_ids: Sequence[str] | None = None,
) -> list[ScoredMemory]:
    """
    Rank candidate memories by blending three relevance signals.

    Args:
        candidates: ``(memory, semantic_score)`` pairs, semantic score in [0, 1]
        query: Raw query text for BM25
        corpus: Memories whose ``related_memories`` define the graph
            (defaults to the candidates themselves)
        config: Weights and parameters; defaults to ``HybridSearchSettings()``
        seed_ids: Graph seeds; defaults to the top ``graph_seed_count``
            candidates by semantic score

    Returns:
        ScoredMemory list sorted descending by ``score``, each carrying its
        sub-scores
    """
    if not candidates:
        return []

    config = config or HybridSearchSettings()
    w_sem, w_bm25, w_graph = config.normalized_weights()

    memories = [memory for memory, _ in candidates]
    bm25 = normalize_scores(rank_with_bm25(query, memories, BM25Params(k1=config.bm25_k1, b=config.bm25_b)))

    graph = build_graph(corpus if corpus is not None else memories)
    seeds = list(seed_ids) if seed_ids is not None else select_seeds(candidates, config.graph_seed_count)
    distances = traverse_graph(seeds, graph, config.graph_max_distance)

    results: list[ScoredMemory] = []
    for memory, semantic in candidates:
        semantic_score = _unit(semantic)
        bm25_score = bm25.get(memory.id, 0.0)
        distance = distances.get(memory.id)
        boost = graph_distance_boost(distance, config.graph_max_distance, config.graph_max_boost)
        results.append(
            ScoredMemory(
                memory=memory,
                score=w_sem * semantic_score + w_bm25 * bm25_score + w_graph * boost,
                semantic_score=semantic_score,
                bm25_score=bm25_score,
                graph_boost=boost,
                graph_distance=distance,
            )
        )

    results.sort(key=lambda r: -r.score)
    return results


def expand_with_graph_neighbors(
    results: Sequence[Memory],
    corpus: Sequence[Memory],
    max_expansion: int = 5,
    max_distance: int = 1,
) -> list[Memory]:
    """Memories linked to the results but not already among them, closest first."""
    if max_expansion <= 0 or not results:
        return []
    neighbors = neighbors_within([m.id for m in results], corpus, max_distance)
    return [memory for memory, _ in neighbors[:max_expansion]]
