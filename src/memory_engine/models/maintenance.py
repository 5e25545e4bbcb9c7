"""Maintenance (dream cycle) result models.

Contradiction and consolidation candidates are ephemeral review items and
stay plain dataclasses; the planned operations and the final report are
frozen Pydantic models so a produced report cannot be altered afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .memory import Memory
from .validators import ConflictSignal, ConflictType, MaintenanceOperation, MaintenanceState, PlannedOperationKind

# ---------------------------------------------------------------------------
# Review candidates
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContradictionCandidate:
    """A detected conflict between two memories.

    ``memory_a`` is the side that would be replaced (older / superseded),
    ``memory_b`` the side that would win.
    """

    memory_a: Memory
    memory_b: Memory
    conflict_type: ConflictType
    signal: ConflictSignal
    confidence: float
    explanation: str

    @property
    def pair(self) -> tuple[str, str]:
        return self.memory_a.id, self.memory_b.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_a": self.memory_a.id,
            "memory_b": self.memory_b.id,
            "conflict_type": self.conflict_type,
            "signal": self.signal,
            "confidence": round(self.confidence, 3),
            "explanation": self.explanation,
        }


@dataclass
class ConsolidationCandidate:
    """A cluster of near-duplicate memories with a proposed merge."""

    memory_ids: list[str]
    similarity: float
    suggested_merge: str
    rationale: str
    memories: list[Memory] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.memory_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_ids": self.memory_ids,
            "size": self.size,
            "similarity": round(self.similarity, 4),
            "suggested_merge": self.suggested_merge,
            "rationale": self.rationale,
        }


# ---------------------------------------------------------------------------
# Plan + report
# ---------------------------------------------------------------------------


class PlannedOperation(BaseModel):
    """One proposed mutation against the persistence collaborator.

    Payload by kind:

    * ``update_importance``: ``{"importance": int, "previous": int, "metadata": dict}``,
      where metadata carries ``base_importance``
    * ``delete``: ``{}``
    * ``save_merged``: ``{"memory": <Memory dict with a generated id>, "supersede": [ids]}``
    * ``supersede``: ``{"new_id": str}``
    """

    model_config = ConfigDict(frozen=True)

    kind: PlannedOperationKind
    memory_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    source_operation: MaintenanceOperation


class MaintenanceReport(BaseModel):
    """Immutable outcome of a maintenance cycle."""

    model_config = ConfigDict(frozen=True)

    started_at: str
    completed_at: str
    operations: list[MaintenanceOperation]
    dry_run: bool
    state: MaintenanceState
    memories_processed: int = 0
    contradictions_found: list[dict[str, Any]] = Field(default_factory=list)
    consolidations: int = 0
    merged_memory_ids: list[str] = Field(default_factory=list)
    memories_decayed: int = 0
    memories_pruned: int = 0
    supersessions: int = 0
    planned: list[PlannedOperation] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
