"""
BM25 lexical ranking over memory content.

Classic Okapi BM25 with the "+1" IDF variant so that terms present in more
than half the corpus still contribute a small positive weight instead of a
negative one:

    idf(t)   = ln((N - df + 0.5) / (df + 0.5) + 1)
    score(d) = Σ idf(t) * tf * (k1 + 1) / (tf + k1 * (1 - b + b * |d| / avgdl))

All functions are pure and never raise for finite input: an empty query or
empty corpus yields an empty score map, a document without any query term
scores exactly 0.0, and a corpus of empty documents falls back to a neutral
length normalisation.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.memory import Memory

DEFAULT_K1 = 1.5
DEFAULT_B = 0.75

STOP_WORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare", "ought",
    "used", "it", "its", "this", "that", "these", "those", "i", "you", "he",
    "she", "we", "they", "what", "which", "who", "whom", "when", "where",
    "why", "how", "all", "each", "every", "both", "few", "more", "most",
    "other", "some", "such", "no", "nor", "not", "only", "own", "same", "so",
    "than", "too", "very", "just", "also", "now", "here", "there", "then",
    "over", "under", "again", "further", "once", "into", "through", "during",
    "before", "after", "above", "below", "up", "down", "out", "off", "about",
})

# Anything that is not a word character or whitespace becomes a separator
_PUNCT_RE = re.compile(r"[^\w\s]")


@dataclass(frozen=True, slots=True)
class BM25Params:
    """Term-frequency saturation (k1) and length normalisation (b)."""

    k1: float = DEFAULT_K1
    b: float = DEFAULT_B


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop single characters and stop words."""
    if not text:
        return []
    return [
        term
        for term in _PUNCT_RE.sub(" ", text.lower()).split()
        if len(term) > 1 and term not in STOP_WORDS
    ]


def calculate_idf(documents: Sequence[Sequence[str]], terms: Iterable[str]) -> dict[str, float]:
    """Inverse document frequency of each term over pre-tokenized documents."""
    n = len(documents)
    doc_sets = [set(doc) for doc in documents]
    idf: dict[str, float] = {}
    for term in terms:
        df = sum(1 for doc in doc_sets if term in doc)
        idf[term] = math.log((n - df + 0.5) / (df + 0.5) + 1)
    return idf


def bm25_score(
    query_terms: Sequence[str],
    document_terms: Sequence[str],
    idf: dict[str, float],
    avg_doc_length: float,
    params: BM25Params = BM25Params(),
) -> float:
    """Score one tokenized document against the query terms."""
    if not query_terms or not document_terms:
        return 0.0

    k1, b = params.k1, params.b
    doc_length = len(document_terms)
    # Degenerate corpus (all documents empty): no length normalisation
    length_ratio = doc_length / avg_doc_length if avg_doc_length > 0 else 1.0
    term_freq = Counter(document_terms)

    score = 0.0
    for term in query_terms:
        tf = term_freq.get(term, 0)
        if tf == 0:
            continue
        numerator = tf * (k1 + 1)
        denominator = tf + k1 * (1 - b + b * length_ratio)
        if denominator <= 0:
            continue
        score += idf.get(term, 0.0) * (numerator / denominator)
    return score


def rank_texts(
    query: str,
    documents: Sequence[str],
    params: BM25Params = BM25Params(),
) -> list[float]:
    """BM25 scores for raw texts, parallel to ``documents``.

    Returns ``[]`` when the query has no usable terms or there are no documents.
    """
    query_terms = tokenize(query)
    if not query_terms or not documents:
        return []

    tokenized = [tokenize(doc) for doc in documents]
    avg_doc_length = sum(len(doc) for doc in tokenized) / len(tokenized)
    idf = calculate_idf(tokenized, set(query_terms))
    return [bm25_score(query_terms, doc, idf, avg_doc_length, params) for doc in tokenized]


def rank_with_bm25(
    query: str,
    memories: Sequence[Memory],
    params: BM25Params = BM25Params(),
) -> dict[str, float]:
    """BM25 score per memory id; empty dict for an empty query or corpus."""
    scores = rank_texts(query, [m.content for m in memories], params)
    return {memory.id: score for memory, score in zip(memories, scores)}


def normalize_scores(scores: dict[str, float]) -> dict[str, float]:
    """Divide by the max score so the best document is 1.0.

    A floor on the divisor keeps an all-zero score set at zero.
    """
    if not scores:
        return {}
    top = max(max(scores.values()), 0.001)
    return {key: value / top for key, value in scores.items()}
