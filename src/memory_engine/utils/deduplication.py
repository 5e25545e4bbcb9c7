"""
Near-duplicate consolidation clustering.

Groups memories whose pairwise semantic similarity (supplied by the
similarity collaborator as an n×n matrix) meets a threshold, then proposes
one merged text per group.

Clustering is greedy single-link: pairs above threshold are visited in
row-major order of the upper triangle; a pair with one clustered member
pulls the other member into that cluster, a pair with neither member
clustered starts a new one, and a pair whose members already sit in two
different clusters is left alone. Members are never re-checked against the
rest of their cluster, so a chain A≈B, B≈C can group A with C even when A
and C are dissimilar. This is a known limitation of the heuristic.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np

from ..config import CONSOLIDATION_THRESHOLD_MAX, CONSOLIDATION_THRESHOLD_MIN
from ..models.maintenance import ConsolidationCandidate
from ..models.memory import Memory

if TYPE_CHECKING:
    from ..judges import MergeSynthesizer

logger = logging.getLogger(__name__)

DEFAULT_CONSOLIDATION_THRESHOLD = 0.85

_WORD_RE = re.compile(r"\W+")

# ---------------------------------------------------------------------------
# Similarity helpers
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    mag = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if mag == 0.0:
        return 0.0
    return float(np.dot(va, vb) / mag)


def text_similarity(text_a: str, text_b: str) -> float:
    """Jaccard similarity over lowercase words longer than two characters."""
    words_a = {w for w in _WORD_RE.split(text_a.lower()) if len(w) > 2}
    words_b = {w for w in _WORD_RE.split(text_b.lower()) if len(w) > 2}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def clamp_threshold(threshold: float) -> float:
    """Clamp a consolidation threshold into the valid [0.5, 0.99] range."""
    if math.isnan(threshold):
        return DEFAULT_CONSOLIDATION_THRESHOLD
    clamped = max(CONSOLIDATION_THRESHOLD_MIN, min(CONSOLIDATION_THRESHOLD_MAX, threshold))
    if clamped != threshold:
        logger.warning("Consolidation threshold %s clamped to %s", threshold, clamped)
    return clamped


# ---------------------------------------------------------------------------
# Greedy single-link clustering
# ---------------------------------------------------------------------------


def greedy_clusters(similarity: np.ndarray, threshold: float) -> list[tuple[list[int], list[float]]]:
    """
    Cluster indices of a square similarity matrix.

    Returns:
        One ``(member_indices, joining_similarities)`` tuple per cluster, in
        creation order. Member indices are sorted; joining similarities are
        the pair scores that added members to the cluster.
    """
    n = similarity.shape[0]
    if n < 2:
        return []

    rows, cols = np.triu_indices(n, k=1)
    scores = similarity[rows, cols]
    above = scores >= threshold

    cluster_of: dict[int, int] = {}
    members: list[list[int]] = []
    joins: list[list[float]] = []

    for i, j, score in zip(rows[above].tolist(), cols[above].tolist(), scores[above].tolist()):
        ci, cj = cluster_of.get(i), cluster_of.get(j)
        if ci is None and cj is None:
            cluster_of[i] = cluster_of[j] = len(members)
            members.append([i, j])
            joins.append([score])
        elif ci is not None and cj is None:
            cluster_of[j] = ci
            members[ci].append(j)
            joins[ci].append(score)
        elif cj is not None and ci is None:
            cluster_of[i] = cj
            members[cj].append(i)
            joins[cj].append(score)

    return [(sorted(m), s) for m, s in zip(members, joins)]


def longest_member_merge(memories: Sequence[Memory], similarity: float) -> tuple[str, str]:
    """Default merge proposal: keep the longest content and explain the grouping."""
    longest = max(memories, key=lambda m: len(m.content))
    shared = set(memories[0].tags)
    for memory in memories[1:]:
        shared &= set(memory.tags)
    if shared:
        rationale = (
            f"{len(memories)} memories share tags {', '.join(sorted(shared))}; "
            f"kept the most detailed ({longest.id})"
        )
    else:
        rationale = f"{len(memories)} memories with average similarity {similarity:.2f}; kept the most detailed ({longest.id})"
    return longest.content, rationale


def find_consolidation_candidates(
    memories: Sequence[Memory],
    similarity: Sequence[Sequence[float]] | np.ndarray,
    threshold: float = DEFAULT_CONSOLIDATION_THRESHOLD,
    synthesizer: MergeSynthesizer | None = None,
) -> list[ConsolidationCandidate]:
    """
    Find groups of near-duplicate memories worth merging.

    Args:
        memories: Candidate memories
        similarity: n×n pairwise similarity matrix parallel to ``memories``
        threshold: Minimum pair similarity, clamped to [0.5, 0.99]
        synthesizer: Merge text strategy; defaults to keeping the longest member

    Returns:
        One ConsolidationCandidate per cluster of two or more memories;
        empty when fewer than two memories are given
    """
    if len(memories) < 2:
        return []

    matrix = np.asarray(similarity, dtype=np.float64)
    if matrix.shape != (len(memories), len(memories)):
        raise ValueError(f"similarity matrix shape {matrix.shape} does not match {len(memories)} memories")
    matrix = np.nan_to_num(matrix, nan=0.0)

    threshold = clamp_threshold(threshold)
    candidates: list[ConsolidationCandidate] = []

    for indices, joining in greedy_clusters(matrix, threshold):
        cluster = [memories[i] for i in indices]
        avg_similarity = float(np.mean(joining)) if joining else threshold
        if synthesizer is not None:
            suggested, rationale = synthesizer.synthesize_merge(cluster, avg_similarity)
        else:
            suggested, rationale = longest_member_merge(cluster, avg_similarity)
        candidates.append(
            ConsolidationCandidate(
                memory_ids=[m.id for m in cluster],
                similarity=avg_similarity,
                suggested_merge=suggested,
                rationale=rationale,
                memories=cluster,
            )
        )

    logger.info(
        "Consolidation scan: %d memories, %d clusters at threshold %.2f",
        len(memories),
        len(candidates),
        threshold,
    )
    return candidates
