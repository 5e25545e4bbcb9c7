"""
Maintenance ("dream") cycle: contradiction resolution, consolidation,
importance decay, and pruning over a bounded set of memories.

Policy and effect are separate:

* ``plan_maintenance`` is pure. Given memories and a similarity matrix it
  returns a ``MaintenancePlan``: the contradiction and consolidation
  candidates it found plus the list of ``PlannedOperation`` mutations.
* ``MaintenanceExecutor`` applies a plan against a ``MemoryStore``. Each
  mutation is attempted independently; a failure is logged, recorded, and
  skipped so one bad item cannot block the batch.
* ``MaintenanceService`` wires the two to the collaborators and tracks the
  cycle state: idle → running → dry_run_complete | applied | failed.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np

from ..agents import AgentRegistry
from ..config import Settings, settings as default_settings
from ..errors import CollaboratorError
from ..judges import ConflictJudge, HeuristicConflictJudge, LongestContentSynthesizer, MergeSynthesizer
from ..models.maintenance import ConsolidationCandidate, ContradictionCandidate, MaintenanceReport, PlannedOperation
from ..models.memory import Memory
from ..models.validators import MAINTENANCE_OPERATIONS, MIN_IMPORTANCE, MaintenanceState
from ..storage.base import MemoryStore, SimilarityService
from ..utils.deduplication import clamp_threshold, find_consolidation_candidates
from ..utils.decay import (
    BASE_IMPORTANCE_KEY,
    DEFAULT_HALF_LIFE_DAYS,
    base_importance,
    calculate_decay,
    decay_age_days,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_operations(operations: Iterable[str] | None, default: Sequence[str]) -> list[str]:
    """Validate and de-duplicate requested operations, keeping canonical order.

    Unknown names are dropped with a warning.
    """
    requested = list(default) if operations is None else list(operations)
    unknown = [op for op in requested if op not in MAINTENANCE_OPERATIONS]
    if unknown:
        logger.warning("Ignoring unknown maintenance operations: %s", ", ".join(unknown))
    return [op for op in MAINTENANCE_OPERATIONS if op in requested]


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MaintenanceOptions:
    """Per-run parameters, consumed by value."""

    operations: tuple[str, ...] = ("consolidate", "contradiction", "decay")
    consolidation_threshold: float = 0.85
    contradiction_min_confidence: float = 0.6
    half_life_days: float | None = None
    shadow_half_life_days: float = 15.0
    access_grace_days: float = 7.0
    min_importance_change: float = 0.1
    prune_min_age_days: float = 30.0
    now: float | None = None

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        operations: Iterable[str] | None = None,
        **overrides: Any,
    ) -> MaintenanceOptions:
        """Build options from settings, with per-call overrides (None values ignored)."""
        values: dict[str, Any] = {
            "operations": tuple(normalize_operations(operations, config.maintenance.default_operations)),
            "consolidation_threshold": config.consolidation.similarity_threshold,
            "contradiction_min_confidence": config.contradiction.min_confidence,
            "half_life_days": None,
            "shadow_half_life_days": config.decay.shadow_half_life_days,
            "access_grace_days": config.decay.access_grace_days,
            "min_importance_change": config.decay.min_importance_change,
            "prune_min_age_days": config.decay.prune_min_age_days,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if values["half_life_days"] is None and config.decay.half_life_days != DEFAULT_HALF_LIFE_DAYS:
            values["half_life_days"] = config.decay.half_life_days
        values["consolidation_threshold"] = clamp_threshold(values["consolidation_threshold"])
        values["contradiction_min_confidence"] = max(0.0, min(1.0, values["contradiction_min_confidence"]))
        return cls(**values)


@dataclass
class MaintenancePlan:
    """Everything a cycle would do, before any mutation."""

    operations: list[str]
    memories_processed: int
    contradictions: list[ContradictionCandidate] = field(default_factory=list)
    consolidations: list[ConsolidationCandidate] = field(default_factory=list)
    planned: list[PlannedOperation] = field(default_factory=list)

    def count(self, kind: str) -> int:
        return sum(1 for op in self.planned if op.kind == kind)


def _plan_contradictions(
    memories: Sequence[Memory],
    judge: ConflictJudge,
    min_confidence: float,
) -> tuple[list[ContradictionCandidate], list[PlannedOperation]]:
    found: list[ContradictionCandidate] = []
    ops: list[PlannedOperation] = []
    superseded: set[str] = set()

    for i, a in enumerate(memories):
        for b in memories[i + 1 :]:
            conflict = judge.evaluate_conflict(a, b)
            if conflict is None or conflict.confidence < min_confidence:
                continue
            found.append(conflict)

            # Temporal conflicts resolve by recency; direct ones wait for review
            if conflict.conflict_type != "temporal":
                continue
            old, new = conflict.memory_a, conflict.memory_b
            if old.superseded_by == new.id or old.id in superseded:
                continue
            superseded.add(old.id)
            ops.append(
                PlannedOperation(
                    kind="supersede",
                    memory_id=old.id,
                    payload={"new_id": new.id},
                    reason=conflict.explanation,
                    source_operation="contradiction",
                )
            )
    return found, ops


def _merged_memory(candidate: ConsolidationCandidate, now: float) -> Memory:
    members = candidate.memories
    keeper = sorted(members, key=lambda m: (m.importance, m.created_at or 0.0), reverse=True)[0]
    tags: list[str] = []
    for member in members:
        tags.extend(t for t in member.tags if t not in tags)
    return Memory(
        id=f"mem_{uuid.uuid4().hex[:12]}",
        content=candidate.suggested_merge,
        memory_type=keeper.memory_type,
        tags=tags,
        importance=max(m.importance for m in members),
        created_at=now,
        valid_from=now,
        project=keeper.project,
        layer=keeper.layer,
        source="consolidated",
        metadata={
            "consolidated_from": candidate.memory_ids,
            "merge_rationale": candidate.rationale,
        },
    )


def _plan_consolidation(
    memories: Sequence[Memory],
    similarity: np.ndarray,
    threshold: float,
    synthesizer: MergeSynthesizer,
    now: float,
) -> tuple[list[ConsolidationCandidate], list[PlannedOperation]]:
    candidates = find_consolidation_candidates(memories, similarity, threshold, synthesizer)
    ops = [
        PlannedOperation(
            kind="save_merged",
            payload={
                "memory": _merged_memory(candidate, now).to_dict(),
                "supersede": list(candidate.memory_ids),
            },
            reason=candidate.rationale,
            source_operation="consolidate",
        )
        for candidate in candidates
    ]
    return candidates, ops


def plan_maintenance(
    memories: Sequence[Memory],
    options: MaintenanceOptions,
    similarity: Sequence[Sequence[float]] | np.ndarray | None = None,
    judge: ConflictJudge | None = None,
    synthesizer: MergeSynthesizer | None = None,
) -> MaintenancePlan:
    """
    Compute a maintenance plan without touching any store.

    Args:
        memories: Memories to maintain (caller bounds the size; scans are O(n²))
        options: Operations and parameters for this run
        similarity: n×n pairwise similarity matrix parallel to ``memories``;
            required for consolidation, ignored otherwise
        judge: Contradiction judge (defaults to the heuristic judge)
        synthesizer: Merge text strategy (defaults to longest content)

    Returns:
        MaintenancePlan; operations are ordered contradiction supersedes,
        consolidation saves, importance updates, then deletes
    """
    judge = judge or HeuristicConflictJudge()
    synthesizer = synthesizer or LongestContentSynthesizer()
    now = options.now if options.now is not None else time.time()
    ops = set(options.operations)
    plan = MaintenancePlan(operations=list(options.operations), memories_processed=len(memories))

    # Already-replaced memories are history: they still decay but are not re-judged or merged
    active_idx = [i for i, m in enumerate(memories) if m.superseded_by is None]
    active = [memories[i] for i in active_idx]
    protected: set[str] = set()

    if "contradiction" in ops:
        plan.contradictions, contradiction_ops = _plan_contradictions(
            active, judge, options.contradiction_min_confidence
        )
        plan.planned.extend(contradiction_ops)
        protected.update(op.memory_id for op in contradiction_ops if op.memory_id)
        protected.update(op.payload["new_id"] for op in contradiction_ops)

    if "consolidate" in ops:
        if similarity is None:
            logger.warning("Consolidation requested without a similarity matrix; skipping")
        else:
            matrix = np.asarray(similarity, dtype=np.float64)
            if matrix.shape != (len(memories), len(memories)):
                raise ValueError(f"similarity matrix shape {matrix.shape} does not match {len(memories)} memories")
            plan.consolidations, merge_ops = _plan_consolidation(
                active,
                matrix[np.ix_(active_idx, active_idx)],
                options.consolidation_threshold,
                synthesizer,
                now,
            )
            plan.planned.extend(merge_ops)
            for candidate in plan.consolidations:
                protected.update(candidate.memory_ids)

    if "decay" in ops or "prune" in ops:
        updates: list[PlannedOperation] = []
        deletes: list[PlannedOperation] = []
        for memory in memories:
            if memory.is_foundational:
                continue
            decayed = calculate_decay(
                memory,
                half_life_days=options.half_life_days,
                now=now,
                access_grace_days=options.access_grace_days,
                shadow_half_life_days=options.shadow_half_life_days,
            )

            stale = decay_age_days(memory, now, options.access_grace_days) >= options.prune_min_age_days
            if "prune" in ops and stale and decayed <= MIN_IMPORTANCE and memory.id not in protected:
                deletes.append(
                    PlannedOperation(
                        kind="delete",
                        memory_id=memory.id,
                        reason=f"importance decays to floor ({decayed:.2f})",
                        source_operation="prune",
                    )
                )
                continue

            new_importance = max(MIN_IMPORTANCE, min(memory.importance, _round_half_up(decayed)))
            if (
                "decay" in ops
                and new_importance != memory.importance
                and abs(decayed - memory.importance) > options.min_importance_change
            ):
                updates.append(
                    PlannedOperation(
                        kind="update_importance",
                        memory_id=memory.id,
                        payload={
                            "importance": new_importance,
                            "previous": memory.importance,
                            "metadata": {**memory.metadata, BASE_IMPORTANCE_KEY: base_importance(memory)},
                        },
                        reason=f"decayed {memory.importance} -> {decayed:.2f}",
                        source_operation="decay",
                    )
                )
        plan.planned.extend(updates)
        plan.planned.extend(deletes)

    logger.info(
        "Maintenance plan: %d memories, %d contradictions, %d consolidations, %d decays, %d prunes",
        len(memories),
        len(plan.contradictions),
        len(plan.consolidations),
        plan.count("update_importance"),
        plan.count("delete"),
    )
    return plan


# ---------------------------------------------------------------------------
# Execution (effects)
# ---------------------------------------------------------------------------


@dataclass
class ExecutionResult:
    """Counts of mutations that actually succeeded."""

    attempted: int = 0
    succeeded: int = 0
    supersessions: int = 0
    consolidations: int = 0
    merged_memory_ids: list[str] = field(default_factory=list)
    memories_decayed: int = 0
    memories_pruned: int = 0
    failures: list[str] = field(default_factory=list)

    def record_failure(self, op: PlannedOperation, target: str | None, error: Exception) -> None:
        message = f"{op.kind} {target or '-'}: {error}"
        logger.error("Maintenance mutation failed: %s", message)
        self.failures.append(message)


class MaintenanceExecutor:
    """Applies planned operations one by one against a MemoryStore."""

    def __init__(self, store: MemoryStore):
        self._store = store

    async def execute(self, plan: MaintenancePlan) -> ExecutionResult:
        result = ExecutionResult()
        for op in plan.planned:
            if op.kind == "save_merged":
                await self._save_merged(op, result)
                continue

            result.attempted += 1
            try:
                if op.kind == "supersede":
                    await self._store.supersede(op.memory_id, op.payload["new_id"])
                    result.supersessions += 1
                elif op.kind == "update_importance":
                    await self._store.update(
                        op.memory_id,
                        {"importance": op.payload["importance"], "metadata": op.payload["metadata"]},
                    )
                    result.memories_decayed += 1
                elif op.kind == "delete":
                    await self._store.delete(op.memory_id)
                    result.memories_pruned += 1
                result.succeeded += 1
            except Exception as e:
                result.record_failure(op, op.memory_id, e)

        logger.info(
            "Maintenance applied: %d/%d mutations succeeded, %d failures",
            result.succeeded,
            result.attempted,
            len(result.failures),
        )
        return result

    async def _save_merged(self, op: PlannedOperation, result: ExecutionResult) -> None:
        result.attempted += 1
        try:
            merged_id = await self._store.save(Memory.from_dict(op.payload["memory"]))
        except Exception as e:
            result.record_failure(op, op.payload["memory"].get("id"), e)
            return
        result.succeeded += 1
        result.consolidations += 1
        result.merged_memory_ids.append(merged_id)

        for old_id in op.payload["supersede"]:
            result.attempted += 1
            try:
                await self._store.supersede(old_id, merged_id)
            except Exception as e:
                result.record_failure(op, old_id, e)
                continue
            result.succeeded += 1
            result.supersessions += 1


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def build_report(
    plan: MaintenancePlan,
    started_at: str,
    dry_run: bool,
    state: MaintenanceState,
    execution: ExecutionResult | None = None,
) -> MaintenanceReport:
    """Assemble the immutable report; apply-mode counts come from ``execution``."""
    common: dict[str, Any] = {
        "started_at": started_at,
        "completed_at": _now_iso(),
        "operations": plan.operations,
        "dry_run": dry_run,
        "state": state,
        "memories_processed": plan.memories_processed,
        "contradictions_found": [c.to_dict() for c in plan.contradictions],
        "planned": plan.planned,
    }
    if execution is None:
        return MaintenanceReport(
            **common,
            consolidations=len(plan.consolidations),
            memories_decayed=plan.count("update_importance"),
            memories_pruned=plan.count("delete"),
            supersessions=plan.count("supersede") + sum(c.size for c in plan.consolidations),
        )
    return MaintenanceReport(
        **common,
        consolidations=execution.consolidations,
        merged_memory_ids=execution.merged_memory_ids,
        memories_decayed=execution.memories_decayed,
        memories_pruned=execution.memories_pruned,
        supersessions=execution.supersessions,
        failures=execution.failures,
    )


class MaintenanceService:
    """Runs one maintenance cycle at a time against the collaborators."""

    def __init__(
        self,
        store: MemoryStore,
        similarity: SimilarityService | None = None,
        judge: ConflictJudge | None = None,
        synthesizer: MergeSynthesizer | None = None,
        agents: AgentRegistry | None = None,
        config: Settings | None = None,
    ):
        self.store = store
        self.similarity = similarity
        self.judge = judge or HeuristicConflictJudge(agents)
        self.synthesizer = synthesizer or LongestContentSynthesizer()
        self.config = config or default_settings
        self.state: MaintenanceState = "idle"
        self.last_report: MaintenanceReport | None = None

    def _transition(self, state: MaintenanceState) -> None:
        logger.info("Maintenance state: %s -> %s", self.state, state)
        self.state = state

    async def _load_memories(self, limit: int) -> list[Memory]:
        try:
            return await self.store.list_memories(limit=limit)
        except Exception as e:
            raise CollaboratorError("list_memories", e) from e

    async def _pairwise(self, memories: Sequence[Memory]) -> np.ndarray | None:
        if self.similarity is None:
            return None
        try:
            return await self.similarity.pairwise(memories)
        except Exception as e:
            raise CollaboratorError("pairwise_similarity", e) from e

    async def plan(
        self,
        operations: Iterable[str] | None = None,
        memories: Sequence[Memory] | None = None,
        **overrides: Any,
    ) -> MaintenancePlan:
        """Fetch (unless given) and plan; collaborator failures propagate as CollaboratorError."""
        options = MaintenanceOptions.from_settings(self.config, operations, **overrides)
        if memories is None:
            memories = await self._load_memories(self.config.maintenance.max_candidates)
        elif len(memories) > self.config.maintenance.max_candidates:
            logger.warning(
                "Maintenance input of %d memories truncated to %d",
                len(memories),
                self.config.maintenance.max_candidates,
            )
            memories = list(memories)[: self.config.maintenance.max_candidates]

        similarity = None
        if "consolidate" in options.operations and len(memories) >= 2:
            similarity = await self._pairwise(memories)
            if similarity is None:
                logger.warning("No similarity service configured; consolidation skipped")

        return plan_maintenance(memories, options, similarity, self.judge, self.synthesizer)

    async def run(
        self,
        operations: Iterable[str] | None = None,
        dry_run: bool = True,
        memories: Sequence[Memory] | None = None,
        **overrides: Any,
    ) -> MaintenanceReport:
        """
        Run a maintenance cycle.

        Args:
            operations: Subset of consolidate/contradiction/decay/prune;
                defaults to the configured set (prune excluded)
            dry_run: Plan only when True; otherwise apply the plan
            memories: Explicit input; fetched from the store when None
            **overrides: MaintenanceOptions fields (e.g. ``half_life_days``,
                ``consolidation_threshold``, ``now``)

        Returns:
            MaintenanceReport. In apply mode the counts reflect only
            mutations that succeeded.
        """
        if self.state == "running":
            raise RuntimeError("a maintenance cycle is already running")

        started_at = _now_iso()
        self._transition("running")
        try:
            plan = await self.plan(operations, memories, **overrides)
        except Exception:
            self._transition("failed")
            raise

        if dry_run:
            report = build_report(plan, started_at, True, "dry_run_complete")
        else:
            execution = await MaintenanceExecutor(self.store).execute(plan)
            all_failed = execution.attempted > 0 and execution.succeeded == 0
            report = build_report(plan, started_at, False, "failed" if all_failed else "applied", execution)

        self._transition(report.state)
        self.last_report = report
        return report
