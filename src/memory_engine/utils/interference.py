"""
Contradiction detection between pairs of stored memories.

Rules are applied in order and the first match wins:

    1. Same memory, or both foundational → no conflict
    2. Supersede link across different creators → temporal ("supersedes"), 0.8
    3. Change phrase on a shared topic ("switched from", "no longer using")
       between decision/pattern/preference memories → temporal ("change"), 0.8
    4. Subject-matched negation ("use X" vs "don't use X") → direct ("negation"), 0.85
    5. Opposite keywords between two live memories sharing ≥2 tags
       → direct ("content"), +0.3 per antonym pair, capped at 0.9
    6. Otherwise no conflict

Same-creator supersession is ordinary revision, not a conflict. For temporal
conflicts ``memory_a`` is always the older / replaced side.

These heuristics are the default judge; anything implementing
``judges.ConflictJudge`` can replace them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from ..models.maintenance import ContradictionCandidate
from ..models.memory import Memory

if TYPE_CHECKING:
    from ..agents import AgentRegistry

logger = logging.getLogger(__name__)

SUPERSEDE_CONFIDENCE = 0.8
CHANGE_CONFIDENCE = 0.8
NEGATION_CONFIDENCE = 0.85
KEYWORD_PAIR_CONFIDENCE = 0.3
KEYWORD_CONFIDENCE_CAP = 0.9
DEFAULT_MIN_CONFIDENCE = 0.6

# ── Change (temporal) patterns ─────────────────────────────────────────

# Memory types whose content states a position that can later change
_POSITION_TYPES: frozenset[str] = frozenset({"decision", "pattern", "preference"})

_CHANGE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(?:switched|changed|moved|migrated)\s+(?:from|away)\b", re.IGNORECASE),
    re.compile(r"\b(?:no longer|stopped|quit)\s+(?:using|doing)\b", re.IGNORECASE),
    re.compile(r"\bnow\s+(?:use|prefer|using|do)\b", re.IGNORECASE),
    re.compile(r"\binstead\s+of\b", re.IGNORECASE),
)

# ── Subject-matched negation patterns ──────────────────────────────────

# (positive, negative) pairs; group 1 of each captures the subject word
_NEGATION_PATTERNS: tuple[tuple[re.Pattern[str], re.Pattern[str]], ...] = (
    (
        re.compile(r"\buse\s+(\w+)", re.IGNORECASE),
        re.compile(r"\b(?:don['’]t|do\s+not|never)\s+use\s+(\w+)", re.IGNORECASE),
    ),
    (
        re.compile(r"\balways\s+(\w+)", re.IGNORECASE),
        re.compile(r"\bnever\s+(\w+)", re.IGNORECASE),
    ),
    (
        re.compile(r"\bprefer\s+(\w+)", re.IGNORECASE),
        re.compile(r"\bavoid\s+(\w+)", re.IGNORECASE),
    ),
    (
        re.compile(r"\b(\w+)\s+is\s+good\b", re.IGNORECASE),
        re.compile(r"\b(\w+)\s+is\s+(?:bad|poor|terrible)\b", re.IGNORECASE),
    ),
    (
        re.compile(r"\b(\w+)\s+works?\s+well\b", re.IGNORECASE),
        re.compile(r"\b(\w+)\s+(?:doesn['’]t|does\s+not)\s+work\b", re.IGNORECASE),
    ),
)

# ── Opposite keyword pairs ─────────────────────────────────────────────

_OPPOSITE_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("never", "always"),
    ("not", "is"),
    ("false", "true"),
    ("incorrect", "correct"),
    ("bug", "feature"),
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _tokenize(text: str) -> set[str]:
    """Tokenize text to lowercase word set."""
    return set(_TOKEN_RE.findall(text.lower()))


def _shared_tags(a: Memory, b: Memory) -> set[str]:
    return set(a.tags) & set(b.tags)


def _older_newer(a: Memory, b: Memory) -> tuple[Memory, Memory]:
    """(older, newer) by creation time; ties keep argument order."""
    if (b.created_at or 0.0) >= (a.created_at or 0.0):
        return a, b
    return b, a


def _agent_label(agent_id: str, agents: AgentRegistry | None) -> str:
    if agents is not None:
        agent = agents.get(agent_id)
        if agent is not None and agent.name:
            return f"{agent.name} ({agent_id})"
    return agent_id


# ── Rules ──────────────────────────────────────────────────────────────


def _check_supersede(a: Memory, b: Memory, agents: AgentRegistry | None) -> ContradictionCandidate | None:
    if a.supersedes == b.id:
        newer, older = a, b
    elif b.supersedes == a.id:
        newer, older = b, a
    else:
        return None

    if not newer.created_by or not older.created_by or newer.created_by == older.created_by:
        return None

    return ContradictionCandidate(
        memory_a=older,
        memory_b=newer,
        conflict_type="temporal",
        signal="supersedes",
        confidence=SUPERSEDE_CONFIDENCE,
        explanation=(
            f"Agent {_agent_label(newer.created_by, agents)} superseded memory {older.id} "
            f"by agent {_agent_label(older.created_by, agents)} with {newer.id}"
        ),
    )


def _check_change(a: Memory, b: Memory) -> ContradictionCandidate | None:
    if a.project != b.project or not _shared_tags(a, b):
        return None
    if a.memory_type not in _POSITION_TYPES or b.memory_type not in _POSITION_TYPES:
        return None
    if not any(p.search(a.content) or p.search(b.content) for p in _CHANGE_PATTERNS):
        return None

    older, newer = _older_newer(a, b)
    return ContradictionCandidate(
        memory_a=older,
        memory_b=newer,
        conflict_type="temporal",
        signal="change",
        confidence=CHANGE_CONFIDENCE,
        explanation=f"Newer memory ({newer.id}) may supersede older memory ({older.id}) on same topic",
    )


def _subjects(pattern: re.Pattern[str], text: str) -> set[str]:
    return {m.lower() for m in pattern.findall(text)}


def _check_negation(a: Memory, b: Memory) -> ContradictionCandidate | None:
    for positive, negative in _NEGATION_PATTERNS:
        neg_a = _subjects(negative, a.content)
        neg_b = _subjects(negative, b.content)
        # "don't use X" also matches "use X"; only un-negated subjects count as positive
        pos_a = _subjects(positive, a.content) - neg_a
        pos_b = _subjects(positive, b.content) - neg_b

        shared = (pos_a & neg_b) | (neg_a & pos_b)
        if shared:
            subject = sorted(shared)[0]
            return ContradictionCandidate(
                memory_a=a,
                memory_b=b,
                conflict_type="direct",
                signal="negation",
                confidence=NEGATION_CONFIDENCE,
                explanation=f'Direct contradiction about "{subject}": one memory asserts it, the other negates it',
            )
    return None


def _check_opposite_keywords(a: Memory, b: Memory) -> ContradictionCandidate | None:
    if not (a.is_live and b.is_live):
        return None
    if len(_shared_tags(a, b)) < 2:
        return None

    tokens_a = _tokenize(a.content)
    tokens_b = _tokenize(b.content)

    matched: list[tuple[str, str]] = []
    confidence = 0.0
    for word_a, word_b in _OPPOSITE_KEYWORDS:
        if (word_a in tokens_a and word_b in tokens_b) or (word_b in tokens_a and word_a in tokens_b):
            matched.append((word_a, word_b))
            confidence = min(confidence + KEYWORD_PAIR_CONFIDENCE, KEYWORD_CONFIDENCE_CAP)

    if not matched:
        return None

    pairs = ", ".join(f'"{x}" vs "{y}"' for x, y in matched)
    return ContradictionCandidate(
        memory_a=a,
        memory_b=b,
        conflict_type="direct",
        signal="content",
        confidence=confidence,
        explanation=f"Potential contradiction: {pairs}",
    )


# ── Public API ─────────────────────────────────────────────────────────


def detect_contradiction(a: Memory, b: Memory, agents: AgentRegistry | None = None) -> ContradictionCandidate | None:
    """
    Decide whether two memories conflict.

    Args:
        a: First memory
        b: Second memory
        agents: Optional contributor registry used to name agents in
            supersede explanations

    Returns:
        A ContradictionCandidate, or None when the pair does not conflict
    """
    if a.id == b.id:
        return None
    if a.is_foundational and b.is_foundational:
        return None

    return (
        _check_supersede(a, b, agents)
        or _check_change(a, b)
        or _check_negation(a, b)
        or _check_opposite_keywords(a, b)
    )


def find_conflicts(
    memory: Memory,
    others: Iterable[Memory],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    agents: AgentRegistry | None = None,
) -> list[ContradictionCandidate]:
    """Conflicts between ``memory`` and each other memory at or above ``min_confidence``."""
    min_confidence = max(0.0, min(1.0, min_confidence))
    conflicts: list[ContradictionCandidate] = []
    for other in others:
        if other.id == memory.id:
            continue
        conflict = detect_contradiction(memory, other, agents)
        if conflict is not None and conflict.confidence >= min_confidence:
            conflicts.append(conflict)
    return conflicts


def find_all_contradictions(
    memories: Sequence[Memory],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    agents: AgentRegistry | None = None,
) -> list[ContradictionCandidate]:
    """Scan every unordered pair once (O(n²)); callers bound ``memories``."""
    min_confidence = max(0.0, min(1.0, min_confidence))
    found: list[ContradictionCandidate] = []
    for i, a in enumerate(memories):
        for b in memories[i + 1 :]:
            conflict = detect_contradiction(a, b, agents)
            if conflict is not None and conflict.confidence >= min_confidence:
                found.append(conflict)
    logger.debug("Contradiction scan: %d memories, %d conflicts", len(memories), len(found))
    return found
