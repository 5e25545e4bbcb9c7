"""
Configuration for the memory engine.

Each concern gets its own ``BaseSettings`` group with an environment prefix
(``MEMORY_HYBRID_SEMANTIC_WEIGHT=0.5`` and so on). Values are consumed by
value per call: services take a settings object (or a group) as an argument
and never read the environment themselves.

Out-of-range values are clamped to the nearest valid bound with a warning
rather than rejected.
"""

import logging

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.validators import MaintenanceOperation

logger = logging.getLogger(__name__)

CONSOLIDATION_THRESHOLD_MIN = 0.5
CONSOLIDATION_THRESHOLD_MAX = 0.99


def clamp(value: float, low: float, high: float, name: str) -> float:
    """Clamp ``value`` into [low, high], logging when it had to move."""
    if value < low or value > high:
        clamped = max(low, min(high, value))
        logger.warning("%s=%s out of range [%s, %s], clamped to %s", name, value, low, high, clamped)
        return clamped
    return value


class HybridSearchSettings(BaseSettings):
    """Weights and parameters for semantic + BM25 + graph ranking."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_HYBRID_", extra="ignore")

    semantic_weight: float = 0.6
    bm25_weight: float = 0.3
    graph_weight: float = 0.1
    graph_max_distance: int = 2
    graph_max_boost: float = 0.3
    graph_seed_count: int = 5
    bm25_k1: float = 1.5
    bm25_b: float = 0.75
    max_candidates: int = 500
    # Project searched when the caller names none
    default_project: str | None = None

    @field_validator("semantic_weight", "bm25_weight", "graph_weight", "graph_max_boost")
    @classmethod
    def _non_negative(cls, v: float, info: ValidationInfo) -> float:
        return clamp(v, 0.0, float("inf"), info.field_name)

    @field_validator("bm25_b")
    @classmethod
    def _unit(cls, v: float) -> float:
        return clamp(v, 0.0, 1.0, "bm25_b")

    @field_validator("bm25_k1")
    @classmethod
    def _k1(cls, v: float) -> float:
        return clamp(v, 0.0, float("inf"), "bm25_k1")

    @field_validator("graph_max_distance", "graph_seed_count", "max_candidates")
    @classmethod
    def _at_least_one(cls, v: int, info: ValidationInfo) -> int:
        return int(clamp(v, 1, float("inf"), info.field_name))

    def normalized_weights(self) -> tuple[float, float, float]:
        """Return (semantic, bm25, graph) weights rescaled to sum to 1.

        All-zero weights fall back to the defaults.
        """
        total = self.semantic_weight + self.bm25_weight + self.graph_weight
        if total <= 0:
            logger.warning("Hybrid weights sum to zero; using defaults 0.6/0.3/0.1")
            return 0.6, 0.3, 0.1
        return self.semantic_weight / total, self.bm25_weight / total, self.graph_weight / total


class ConsolidationSettings(BaseSettings):
    """Near-duplicate clustering."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_CONSOLIDATION_", extra="ignore")

    similarity_threshold: float = 0.85
    max_candidates: int = 1000

    @field_validator("similarity_threshold")
    @classmethod
    def _threshold(cls, v: float) -> float:
        return clamp(v, CONSOLIDATION_THRESHOLD_MIN, CONSOLIDATION_THRESHOLD_MAX, "similarity_threshold")


class ContradictionSettings(BaseSettings):
    """Pairwise conflict scanning."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_CONTRADICTION_", extra="ignore")

    min_confidence: float = 0.6

    @field_validator("min_confidence")
    @classmethod
    def _confidence(cls, v: float) -> float:
        return clamp(v, 0.0, 1.0, "min_confidence")


class DecaySettings(BaseSettings):
    """Importance half-life decay."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_DECAY_", extra="ignore")

    half_life_days: float = 30.0
    # Auto-promoted shadow memories fade twice as fast
    shadow_half_life_days: float = 15.0
    access_grace_days: float = 7.0
    min_importance_change: float = 0.1
    # Decay age a floored memory must reach before prune may delete it
    prune_min_age_days: float = 30.0

    @field_validator("half_life_days", "shadow_half_life_days")
    @classmethod
    def _positive(cls, v: float, info: ValidationInfo) -> float:
        return clamp(v, 0.01, float("inf"), info.field_name)

    @field_validator("access_grace_days", "min_importance_change", "prune_min_age_days")
    @classmethod
    def _non_negative(cls, v: float, info: ValidationInfo) -> float:
        return clamp(v, 0.0, float("inf"), info.field_name)


class MaintenanceSettings(BaseSettings):
    """Dream-cycle orchestration."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_MAINTENANCE_", extra="ignore")

    # prune is destructive and must be requested explicitly
    default_operations: list[MaintenanceOperation] = Field(
        default_factory=lambda: ["consolidate", "contradiction", "decay"]
    )
    max_candidates: int = 1000

    @field_validator("max_candidates")
    @classmethod
    def _at_least_two(cls, v: int) -> int:
        return int(clamp(v, 2, float("inf"), "max_candidates"))


class Settings(BaseSettings):
    """Top-level settings aggregating every group."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_", extra="ignore")

    hybrid: HybridSearchSettings = Field(default_factory=HybridSearchSettings)
    consolidation: ConsolidationSettings = Field(default_factory=ConsolidationSettings)
    contradiction: ContradictionSettings = Field(default_factory=ContradictionSettings)
    decay: DecaySettings = Field(default_factory=DecaySettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)


settings = Settings()
