"""
Pluggable judgement for the maintenance cycle.

The orchestrator only talks to two small capabilities:

* ``ConflictJudge.evaluate_conflict(a, b)``: does this pair conflict?
* ``MergeSynthesizer.synthesize_merge(memories, similarity)``: what should
  a consolidated memory say?

The heuristic implementations here are the defaults. A human-in-the-loop
reviewer or a model-backed judge can be swapped in without touching the
orchestrator.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from .agents import AgentRegistry
from .models.maintenance import ContradictionCandidate
from .models.memory import Memory
from .utils.deduplication import longest_member_merge, text_similarity
from .utils.interference import detect_contradiction

logger = logging.getLogger(__name__)

NOVELTY_THRESHOLD = 0.3  # Minimum share of new words for a sentence to be kept
DUPLICATE_TEXT_THRESHOLD = 0.7  # Jaccard above which two additions are the same
MIN_SENTENCE_LENGTH = 10

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_WORD_RE = re.compile(r"\W+")


@runtime_checkable
class ConflictJudge(Protocol):
    """Protocol for pluggable contradiction judges."""

    def evaluate_conflict(self, a: Memory, b: Memory) -> ContradictionCandidate | None:
        """Return a candidate when ``a`` and ``b`` conflict, else None."""


@runtime_checkable
class MergeSynthesizer(Protocol):
    """Protocol for pluggable merge text synthesis."""

    def synthesize_merge(self, memories: Sequence[Memory], similarity: float) -> tuple[str, str]:
        """Return ``(merged_content, rationale)`` for a cluster."""


class HeuristicConflictJudge:
    """Rule-based judge backed by ``utils.interference``."""

    def __init__(self, agents: AgentRegistry | None = None):
        self._agents = agents

    def evaluate_conflict(self, a: Memory, b: Memory) -> ContradictionCandidate | None:
        return detect_contradiction(a, b, self._agents)


class LongestContentSynthesizer:
    """Keep the longest member verbatim; placeholder for a real synthesis step."""

    def synthesize_merge(self, memories: Sequence[Memory], similarity: float) -> tuple[str, str]:
        if not memories:
            return "", "No memories to merge"
        return longest_member_merge(memories, similarity)


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) > 5]


def _content_words(text: str) -> set[str]:
    return {w for w in _WORD_RE.split(text.lower()) if len(w) > 3}


class NoveltyMergeSynthesizer:
    """Keep the best member and append sentences from the others that add new information.

    The primary member is chosen by importance, then length, then recency.
    A sentence from another member is appended when more than 30% of its
    words are absent from the primary and it is not a near-copy of an
    addition already made.
    """

    def synthesize_merge(self, memories: Sequence[Memory], similarity: float) -> tuple[str, str]:
        if not memories:
            return "", "No memories to merge"
        if len(memories) == 1:
            return memories[0].content, "Single memory, no merge needed"

        ranked = sorted(
            memories,
            key=lambda m: (m.importance, len(m.content), m.created_at or 0.0),
            reverse=True,
        )
        primary, others = ranked[0], ranked[1:]
        primary_words = _content_words(primary.content)

        additions: list[str] = []
        for other in others:
            for sentence in _sentences(other.content):
                words = _content_words(sentence)
                overlap = len(words & primary_words)
                novelty = 1 - overlap / max(len(words), 1)
                if novelty <= NOVELTY_THRESHOLD or len(sentence) <= MIN_SENTENCE_LENGTH:
                    continue
                if any(text_similarity(existing, sentence) > DUPLICATE_TEXT_THRESHOLD for existing in additions):
                    continue
                additions.append(sentence)

        if not additions:
            return (
                primary.content,
                f"Kept most important/detailed memory ({len(memories) - 1} near-duplicates removed).",
            )

        merged = f"{primary.content}\n\n[Additional context: {'. '.join(additions)}]"
        logger.debug("Novelty merge of %d memories added %d sentences", len(memories), len(additions))
        return (
            merged,
            f"Combined {len(memories)} memories. Base: most important/detailed. "
            f"Added {len(additions)} unique detail(s) from others.",
        )
