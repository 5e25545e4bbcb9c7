"""
Tests for hybrid ranking (semantic + BM25 + graph proximity).

Covers:
- Graph distance boost curve
- Weight normalisation and sub-score transparency
- Ordering, stability on ties, clamping of semantic scores
- Graph expansion with neighbours
"""

import pytest

from memory_engine.config import HybridSearchSettings
from memory_engine.models.memory import Memory
from memory_engine.utils.hybrid_search import (
    expand_with_graph_neighbors,
    graph_distance_boost,
    hybrid_score,
    select_seeds,
)


def _memory(memory_id: str, content: str, related: list[str] | None = None) -> Memory:
    return Memory(id=memory_id, content=content, related_memories=related or [], created_at=1_700_000_000.0)


# ── graph_distance_boost ───────────────────────────────────────────────


class TestGraphDistanceBoost:
    def test_seed_gets_no_boost(self):
        assert graph_distance_boost(0) == 0.0

    def test_one_hop_gets_full_boost(self):
        assert graph_distance_boost(1) == pytest.approx(0.3)

    def test_two_hops_gets_half(self):
        assert graph_distance_boost(2) == pytest.approx(0.15)

    def test_beyond_max_distance(self):
        assert graph_distance_boost(3) == 0.0

    def test_unreachable(self):
        assert graph_distance_boost(None) == 0.0

    def test_strictly_decreasing_within_max(self):
        boosts = [graph_distance_boost(d, max_distance=5) for d in range(1, 6)]
        assert all(a > b for a, b in zip(boosts, boosts[1:]))


# ── hybrid_score ───────────────────────────────────────────────────────


class TestHybridScore:
    def test_empty_candidates(self):
        assert hybrid_score([], "query") == []

    def test_semantic_only_ordering(self):
        candidates = [
            (_memory("low", "alpha"), 0.2),
            (_memory("high", "beta"), 0.9),
        ]
        config = HybridSearchSettings(semantic_weight=1.0, bm25_weight=0.0, graph_weight=0.0)
        results = hybrid_score(candidates, "unrelated", config=config)
        assert [r.id for r in results] == ["high", "low"]
        assert results[0].score == pytest.approx(0.9)

    def test_combined_formula_with_default_weights(self):
        candidates = [(_memory("a", "kubernetes operator rollout"), 0.5)]
        results = hybrid_score(candidates, "kubernetes", config=HybridSearchSettings())
        result = results[0]
        # Single candidate: BM25 normalises to 1.0; it is its own seed so graph boost is 0
        assert result.bm25_score == pytest.approx(1.0)
        assert result.graph_boost == 0.0
        assert result.score == pytest.approx(0.6 * 0.5 + 0.3 * 1.0)

    def test_weights_are_renormalised(self):
        candidates = [(_memory("a", "kubernetes"), 1.0)]
        config = HybridSearchSettings(semantic_weight=2.0, bm25_weight=2.0, graph_weight=0.0)
        result = hybrid_score(candidates, "kubernetes", config=config)[0]
        assert result.score == pytest.approx(1.0)

    def test_bm25_breaks_semantic_tie(self):
        candidates = [
            (_memory("miss", "weekly planning notes"), 0.5),
            (_memory("hit", "FPGA EtherCAT bring-up notes"), 0.5),
        ]
        results = hybrid_score(candidates, "FPGA EtherCAT")
        assert results[0].id == "hit"
        assert results[1].bm25_score == 0.0

    def test_graph_neighbour_of_seed_gets_boost(self):
        seed = _memory("seed", "deployment runbook", related=["linked"])
        linked = _memory("linked", "rollback checklist")
        stranger = _memory("stranger", "rollback checklist")
        config = HybridSearchSettings(graph_seed_count=1)
        results = hybrid_score([(seed, 0.9), (linked, 0.1), (stranger, 0.1)], "nothing matches", config=config)
        by_id = {r.id: r for r in results}
        assert by_id["linked"].graph_distance == 1
        assert by_id["linked"].graph_boost == pytest.approx(0.3)
        assert by_id["stranger"].graph_distance is None
        assert by_id["linked"].score > by_id["stranger"].score

    def test_explicit_seed_ids(self):
        a = _memory("a", "one", related=["b"])
        b = _memory("b", "two")
        results = hybrid_score([(a, 0.0), (b, 0.0)], "zzz", seed_ids=["b"])
        by_id = {r.id: r for r in results}
        assert by_id["a"].graph_distance == 1
        assert by_id["b"].graph_distance == 0

    def test_corpus_links_route_through_non_candidates(self):
        a = _memory("a", "one", related=["bridge"])
        bridge = _memory("bridge", "bridge", related=["c"])
        c = _memory("c", "three")
        config = HybridSearchSettings(graph_seed_count=1)
        results = hybrid_score([(a, 0.9), (c, 0.1)], "zzz", corpus=[a, bridge, c], config=config)
        by_id = {r.id: r for r in results}
        assert by_id["c"].graph_distance == 2
        assert by_id["c"].graph_boost == pytest.approx(0.15)

    def test_semantic_scores_are_clamped(self):
        candidates = [(_memory("a", "x content"), 7.5), (_memory("b", "y content"), -2.0)]
        results = hybrid_score(candidates, "zzz")
        by_id = {r.id: r for r in results}
        assert by_id["a"].semantic_score == 1.0
        assert by_id["b"].semantic_score == 0.0

    def test_ties_keep_input_order(self):
        candidates = [(_memory(str(i), "same text"), 0.4) for i in range(5)]
        config = HybridSearchSettings(graph_weight=0.0)
        results = hybrid_score(candidates, "same", config=config)
        assert [r.id for r in results] == ["0", "1", "2", "3", "4"]

    def test_weights_can_reorder_candidates(self):
        exact = (_memory("exact", "FPGA EtherCAT timing"), 0.3)
        semantic = (_memory("semantic", "fieldbus controller bring-up"), 0.9)
        lexical = HybridSearchSettings(semantic_weight=0.1, bm25_weight=0.9, graph_weight=0.0)
        meaning = HybridSearchSettings(semantic_weight=0.9, bm25_weight=0.1, graph_weight=0.0)
        assert hybrid_score([exact, semantic], "FPGA EtherCAT", config=lexical)[0].id == "exact"
        assert hybrid_score([exact, semantic], "FPGA EtherCAT", config=meaning)[0].id == "semantic"

    def test_results_sorted_descending(self):
        candidates = [(_memory(str(i), f"note {i}"), s) for i, s in enumerate([0.3, 0.8, 0.1, 0.5])]
        results = hybrid_score(candidates, "note")
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)


class TestSelectSeeds:
    def test_top_by_semantic(self):
        candidates = [(_memory("a", "x"), 0.1), (_memory("b", "x"), 0.9), (_memory("c", "x"), 0.5)]
        assert select_seeds(candidates, 2) == ["b", "c"]

    def test_zero_seeds(self):
        assert select_seeds([(_memory("a", "x"), 0.1)], 0) == []


# ── expand_with_graph_neighbors ────────────────────────────────────────


class TestExpandWithGraphNeighbors:
    def test_adds_linked_memories_not_in_results(self):
        a = _memory("a", "one", related=["b", "c"])
        b = _memory("b", "two")
        c = _memory("c", "three")
        expanded = expand_with_graph_neighbors([a, b], [a, b, c])
        assert [m.id for m in expanded] == ["c"]

    def test_respects_max_expansion(self):
        hub = _memory("hub", "hub", related=[f"n{i}" for i in range(10)])
        corpus = [hub] + [_memory(f"n{i}", f"leaf {i}") for i in range(10)]
        assert len(expand_with_graph_neighbors([hub], corpus, max_expansion=3)) == 3

    def test_empty_results(self):
        assert expand_with_graph_neighbors([], [_memory("a", "one")]) == []
