"""
Tests for the maintenance (dream) cycle.

Covers:
- Pure planning: decay, prune, contradiction, consolidation operations
- Dry runs never mutate the store
- Apply mode: successful mutations, per-item failure isolation, all-failed state
- Collaborator failures during planning surface as CollaboratorError
"""

from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from memory_engine.config import DecaySettings, Settings
from memory_engine.errors import CollaboratorError
from memory_engine.models.memory import Memory
from memory_engine.services.maintenance_service import (
    MaintenanceExecutor,
    MaintenanceOptions,
    MaintenanceService,
    normalize_operations,
    plan_maintenance,
)
from memory_engine.storage.memory_store import InMemoryMemoryStore

NOW = 1_700_000_000.0
DAY = 86400.0


def _memory(memory_id: str, content: str = "some memory", days_old: float = 0.0, **fields) -> Memory:
    return Memory(id=memory_id, content=content, created_at=NOW - days_old * DAY, **fields)


def _options(*operations: str, **fields) -> MaintenanceOptions:
    return MaintenanceOptions(operations=tuple(operations), now=NOW, **fields)


def _similarity(matrix: np.ndarray) -> MagicMock:
    service = MagicMock()
    service.pairwise = AsyncMock(return_value=matrix)
    return service


def _react_pair() -> list[Memory]:
    common = {"memory_type": "decision", "tags": ["frontend"], "project": "web"}
    return [
        _memory("old", "We use React for the frontend", days_old=2, **common),
        _memory("new", "Switched from React to Vue for the frontend", days_old=1, **common),
    ]


# ── normalize_operations ───────────────────────────────────────────────


class TestNormalizeOperations:
    def test_defaults_when_none(self):
        assert normalize_operations(None, ["decay"]) == ["decay"]

    def test_unknown_dropped_and_order_canonical(self):
        assert normalize_operations(["prune", "bogus", "decay", "decay"], []) == ["decay", "prune"]


# ── plan_maintenance ───────────────────────────────────────────────────


class TestPlanDecay:
    def test_half_life_update_is_planned(self):
        plan = plan_maintenance([_memory("m", importance=4, days_old=30)], _options("decay"))
        assert len(plan.planned) == 1
        op = plan.planned[0]
        assert op.kind == "update_importance"
        assert op.payload["importance"] == 2
        assert op.payload["previous"] == 4
        assert op.payload["metadata"] == {"base_importance": 4}

    def test_fresh_memory_unchanged(self):
        plan = plan_maintenance([_memory("m", importance=4, days_old=1)], _options("decay"))
        assert plan.planned == []

    def test_foundational_never_planned(self):
        memory = _memory("f", importance=5, days_old=3650, memory_type="foundational")
        plan = plan_maintenance([memory], _options("decay", "prune"))
        assert plan.planned == []

    def test_half_life_override(self):
        plan = plan_maintenance([_memory("m", importance=4, days_old=10)], _options("decay", half_life_days=10.0))
        assert plan.planned[0].payload["importance"] == 2

    def test_decay_starts_from_recorded_base(self):
        # Already decayed 4 -> 2 by an earlier cycle; one day later nothing changes
        memory = _memory("m", importance=2, days_old=31, metadata={"base_importance": 4})
        assert plan_maintenance([memory], _options("decay")).planned == []

    def test_repeated_applies_do_not_compound(self):
        memory = _memory("m", importance=4, days_old=30)
        first = plan_maintenance([memory], _options("decay")).planned[0]
        decayed = memory.model_copy(
            update={"importance": first.payload["importance"], "metadata": first.payload["metadata"]}
        )
        next_day = MaintenanceOptions(operations=("decay",), now=NOW + DAY)
        assert plan_maintenance([decayed], next_day).planned == []


class TestPlanPrune:
    def test_prune_only_when_requested(self):
        memory = _memory("m", importance=2, days_old=120)
        assert [op.kind for op in plan_maintenance([memory], _options("decay")).planned] == ["update_importance"]
        assert [op.kind for op in plan_maintenance([memory], _options("decay", "prune")).planned] == ["delete"]

    def test_just_saved_floor_memory_is_kept(self):
        plan = plan_maintenance([_memory("just-saved", importance=1)], _options("prune"))
        assert plan.planned == []

    def test_stale_floor_memory_is_pruned(self):
        memories = [_memory("fresh", importance=1, days_old=5), _memory("stale", importance=1, days_old=45)]
        plan = plan_maintenance(memories, _options("prune"))
        assert [(op.kind, op.memory_id) for op in plan.planned] == [("delete", "stale")]

    def test_recent_access_defers_prune(self):
        memory = _memory("m", importance=1, days_old=90, last_accessed=NOW - 2 * DAY)
        assert plan_maintenance([memory], _options("prune")).planned == []

    def test_min_age_is_configurable(self):
        memory = _memory("m", importance=1, days_old=5)
        plan = plan_maintenance([memory], _options("prune", prune_min_age_days=1.0))
        assert [op.kind for op in plan.planned] == ["delete"]

    def test_prune_skips_memories_being_resolved(self):
        memories = _react_pair()
        memories[0] = memories[0].model_copy(update={"importance": 1})
        plan = plan_maintenance(memories, _options("contradiction", "prune"))
        assert "delete" not in [op.kind for op in plan.planned]


class TestPlanContradictions:
    def test_temporal_conflict_plans_supersede(self):
        plan = plan_maintenance(_react_pair(), _options("contradiction"))
        assert len(plan.contradictions) == 1
        assert [(op.kind, op.memory_id, op.payload) for op in plan.planned] == [
            ("supersede", "old", {"new_id": "new"})
        ]

    def test_direct_conflict_is_reported_only(self):
        memories = [_memory("a", "Use TypeScript for type safety"), _memory("b", "Don't use TypeScript in scripts")]
        plan = plan_maintenance(memories, _options("contradiction"))
        assert plan.contradictions[0].conflict_type == "direct"
        assert plan.planned == []

    def test_min_confidence_filters(self):
        plan = plan_maintenance(_react_pair(), _options("contradiction", contradiction_min_confidence=0.9))
        assert plan.contradictions == []

    def test_already_resolved_pair_not_replanned(self):
        memories = _react_pair()
        memories[0] = memories[0].model_copy(update={"superseded_by": "new"})
        plan = plan_maintenance(memories, _options("contradiction"))
        assert plan.planned == []

    def test_judge_is_pluggable(self):
        judge = MagicMock()
        judge.evaluate_conflict.return_value = None
        plan = plan_maintenance(_react_pair(), _options("contradiction"), judge=judge)
        judge.evaluate_conflict.assert_called_once()
        assert plan.contradictions == []


class TestPlanConsolidation:
    def test_cluster_plans_merge(self):
        memories = [
            _memory("a", "Redis runs on port 6379", tags=["redis"], importance=2),
            _memory("b", "Redis runs on port 6379 in staging", tags=["infra"], importance=4),
        ]
        sim = np.array([[1.0, 0.95], [0.95, 1.0]])
        plan = plan_maintenance(memories, _options("consolidate"), similarity=sim)
        assert len(plan.consolidations) == 1
        op = plan.planned[0]
        assert op.kind == "save_merged"
        assert op.payload["supersede"] == ["a", "b"]
        merged = op.payload["memory"]
        assert merged["source"] == "consolidated"
        assert merged["importance"] == 4
        assert merged["tags"] == ["redis", "infra"]
        assert merged["content"] == "Redis runs on port 6379 in staging"

    def test_missing_matrix_skips_consolidation(self):
        plan = plan_maintenance([_memory("a"), _memory("b")], _options("consolidate"))
        assert plan.consolidations == []

    def test_superseded_memories_are_not_merged(self):
        memories = [_memory("a", superseded_by="b"), _memory("b"), _memory("c")]
        sim = np.ones((3, 3))
        plan = plan_maintenance(memories, _options("consolidate"), similarity=sim)
        assert plan.consolidations[0].memory_ids == ["b", "c"]

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            plan_maintenance([_memory("a"), _memory("b")], _options("consolidate"), similarity=np.eye(3))


class TestPlanPurity:
    def test_inputs_not_modified(self):
        memories = [_memory("m", importance=4, days_old=30)] + _react_pair()
        before = [m.model_dump() for m in memories]
        plan_maintenance(memories, _options("decay", "prune", "contradiction"))
        assert [m.model_dump() for m in memories] == before


# ── MaintenanceService ─────────────────────────────────────────────────


def _mock_store(memories: list[Memory]) -> AsyncMock:
    store = AsyncMock()
    store.list_memories.return_value = memories
    store.save.return_value = "merged-1"
    return store


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_never_mutates(self):
        memories = [_memory("m", importance=4, days_old=30)] + _react_pair()
        store = _mock_store(memories)
        service = MaintenanceService(store, _similarity(np.eye(3)))
        report = await service.run(["consolidate", "contradiction", "decay", "prune"], dry_run=True, now=NOW)

        assert report.dry_run is True
        assert report.state == "dry_run_complete"
        assert report.memories_processed == 3
        assert report.memories_decayed >= 1
        assert len(report.contradictions_found) == 1
        assert report.planned
        store.save.assert_not_awaited()
        store.update.assert_not_awaited()
        store.delete.assert_not_awaited()
        store.supersede.assert_not_awaited()
        assert service.state == "dry_run_complete"

    @pytest.mark.asyncio
    async def test_explicit_memories_bypass_store(self):
        store = _mock_store([])
        report = await MaintenanceService(store).run(["decay"], memories=[_memory("m", importance=4, days_old=30)], now=NOW)
        store.list_memories.assert_not_awaited()
        assert report.memories_decayed == 1

    @pytest.mark.asyncio
    async def test_report_serialises(self):
        service = MaintenanceService(_mock_store(_react_pair()))
        report = await service.run(["contradiction"], now=NOW)
        data = report.to_dict()
        assert data["operations"] == ["contradiction"]
        assert data["contradictions_found"][0]["conflict_type"] == "temporal"
        assert data["planned"][0]["kind"] == "supersede"


class TestApply:
    @pytest.mark.asyncio
    async def test_apply_decay_and_supersede(self):
        store = InMemoryMemoryStore([_memory("m", importance=4, days_old=30)] + _react_pair())
        service = MaintenanceService(store)
        report = await service.run(["contradiction", "decay"], dry_run=False, now=NOW)

        assert report.state == "applied"
        assert report.memories_decayed == 1
        assert report.supersessions == 1
        assert (await store.get("m")).importance == 2
        assert (await store.get("m")).metadata["base_importance"] == 4
        assert (await store.get("old")).superseded_by == "new"
        assert (await store.get("new")).supersedes == "old"

    @pytest.mark.asyncio
    async def test_apply_consolidation(self):
        store = InMemoryMemoryStore(
            [
                _memory("a", "Redis runs on port 6379", tags=["redis"]),
                _memory("b", "Redis runs on port 6379 in staging", tags=["redis"]),
            ]
        )
        service = MaintenanceService(store, _similarity(np.array([[1.0, 0.97], [0.97, 1.0]])))
        report = await service.run(["consolidate"], dry_run=False, now=NOW)

        assert report.consolidations == 1
        assert report.supersessions == 2
        merged_id = report.merged_memory_ids[0]
        merged = await store.get(merged_id)
        assert merged.source == "consolidated"
        assert (await store.get("a")).superseded_by == merged_id
        assert (await store.get("b")).superseded_by == merged_id

    @pytest.mark.asyncio
    async def test_apply_prune(self):
        store = InMemoryMemoryStore([_memory("stale", importance=1, days_old=200), _memory("fresh", importance=3)])
        report = await MaintenanceService(store).run(["prune"], dry_run=False, now=NOW)
        assert report.memories_pruned == 1
        assert "stale" not in store
        assert "fresh" in store

    @pytest.mark.asyncio
    async def test_apply_prune_keeps_just_saved_memory(self):
        store = InMemoryMemoryStore([_memory("just-saved", importance=1)])
        report = await MaintenanceService(store).run(["prune"], dry_run=False, now=NOW)
        assert report.memories_pruned == 0
        assert "just-saved" in store

    @pytest.mark.asyncio
    async def test_partial_failure_counts_only_successes(self):
        memories = [_memory(f"m{i}", importance=4, days_old=30) for i in range(3)]
        store = _mock_store(memories)

        async def flaky_update(memory_id, fields):
            if memory_id == "m1":
                raise RuntimeError("write conflict")

        store.update.side_effect = flaky_update
        report = await MaintenanceService(store).run(["decay"], dry_run=False, now=NOW)

        assert report.state == "applied"
        assert report.memories_decayed == 2
        assert len(report.failures) == 1
        assert "m1" in report.failures[0]
        assert store.update.await_count == 3

    @pytest.mark.asyncio
    async def test_all_mutations_failing_is_failed_state(self):
        store = _mock_store([_memory("m", importance=4, days_old=30)])
        store.update.side_effect = RuntimeError("read-only")
        service = MaintenanceService(store)
        report = await service.run(["decay"], dry_run=False, now=NOW)
        assert report.state == "failed"
        assert report.memories_decayed == 0
        assert service.state == "failed"

    @pytest.mark.asyncio
    async def test_nothing_to_do_is_applied(self):
        report = await MaintenanceService(_mock_store([_memory("m")])).run(["decay"], dry_run=False, now=NOW)
        assert report.state == "applied"
        assert report.failures == []


class TestCollaboratorFailures:
    @pytest.mark.asyncio
    async def test_store_listing_failure(self):
        store = AsyncMock()
        store.list_memories.side_effect = ConnectionError("store down")
        service = MaintenanceService(store)
        with pytest.raises(CollaboratorError) as exc_info:
            await service.run(["decay"])
        assert exc_info.value.operation == "list_memories"
        assert service.state == "failed"

    @pytest.mark.asyncio
    async def test_similarity_failure(self):
        similarity = MagicMock()
        similarity.pairwise = AsyncMock(side_effect=TimeoutError("embedder timeout"))
        service = MaintenanceService(_mock_store([_memory("a"), _memory("b")]), similarity)
        with pytest.raises(CollaboratorError):
            await service.run(["consolidate"])

    @pytest.mark.asyncio
    async def test_service_can_run_again_after_failure(self):
        store = _mock_store([_memory("m")])
        store.list_memories.side_effect = [ConnectionError("blip"), [_memory("m")]]
        service = MaintenanceService(store)
        with pytest.raises(CollaboratorError):
            await service.run(["decay"])
        report = await service.run(["decay"])
        assert report.state == "dry_run_complete"


class TestExecutor:
    @pytest.mark.asyncio
    async def test_failed_merge_save_skips_supersedes(self):
        memories = [_memory("a", "one"), _memory("b", "two")]
        plan = plan_maintenance(memories, _options("consolidate"), similarity=np.ones((2, 2)))
        store = AsyncMock()
        store.save.side_effect = RuntimeError("disk full")
        result = await MaintenanceExecutor(store).execute(plan)
        assert result.consolidations == 0
        assert len(result.failures) == 1
        store.supersede.assert_not_awaited()


class TestOptions:
    def test_from_settings_overrides(self):
        options = MaintenanceOptions.from_settings(Settings(), ["decay"], consolidation_threshold=0.2, now=NOW)
        assert options.operations == ("decay",)
        assert options.consolidation_threshold == 0.5
        assert options.half_life_days is None
        assert options.now == NOW

    def test_none_overrides_ignored(self):
        options = MaintenanceOptions.from_settings(Settings(), None, half_life_days=None)
        assert options.operations == ("consolidate", "contradiction", "decay")

    def test_prune_min_age_from_settings(self):
        config = Settings(decay=DecaySettings(prune_min_age_days=90.0))
        assert MaintenanceOptions.from_settings(config, ["prune"]).prune_min_age_days == 90.0
