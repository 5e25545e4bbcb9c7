"""
Importance decay with usage resistance.

Importance halves every ``half_life_days`` of effective age:

    resistance     = min(1, access_count / 10)
    effective_age  = age_days * (1 - 0.5 * resistance)
    decayed        = importance * 0.5 ** (effective_age / half_life_days)

then clamped to [1, importance]. Frequently used memories age at up to
half speed. ``age_days`` is the time since creation, but a recent access
pulls it down to ``days_since_access + access_grace_days``, so touching a
memory restarts its clock (up to the grace window).

Foundational memories never decay. The functions are pure and never leave
[1, importance] for any finite input, including extreme ages.

Applied decay writes a smaller integer importance back to the store, so the
value the memory started from is kept in ``metadata["base_importance"]`` and
later cycles decay from that instead of from the already-decayed value.
"""

from __future__ import annotations

import math
import time

from ..models.memory import Memory
from ..models.validators import MAX_IMPORTANCE, MIN_IMPORTANCE

DEFAULT_HALF_LIFE_DAYS = 30.0
SHADOW_HALF_LIFE_DAYS = 15.0
DEFAULT_ACCESS_GRACE_DAYS = 7.0
RESISTANCE_SATURATION_ACCESSES = 10
MAX_RESISTANCE_DISCOUNT = 0.5
BASE_IMPORTANCE_KEY = "base_importance"


def resistance_factor(access_count: int | None) -> float:
    """0.0 (never accessed) to 1.0 (10+ accesses); negative or missing counts are 0."""
    if not access_count or access_count < 0:
        return 0.0
    return min(1.0, access_count / RESISTANCE_SATURATION_ACCESSES)


def effective_age_days(age_days: float, access_count: int | None) -> float:
    """Discount age by usage: heavily used memories age at half speed."""
    if not math.isfinite(age_days):
        return age_days if age_days > 0 else 0.0
    return max(0.0, age_days) * (1 - resistance_factor(access_count) * MAX_RESISTANCE_DISCOUNT)


def decay_importance(
    importance: float,
    age_days: float,
    access_count: int | None = 0,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """Apply half-life decay to a raw importance value, floored at 1."""
    if half_life_days <= 0 or math.isnan(half_life_days):
        half_life_days = DEFAULT_HALF_LIFE_DAYS
    effective = effective_age_days(age_days, access_count)
    factor = 0.0 if math.isinf(effective) else 0.5 ** (effective / half_life_days)
    decayed = importance * factor
    return max(float(MIN_IMPORTANCE), min(float(importance), decayed))


def base_importance(memory: Memory) -> int:
    """Importance before any applied decay; a manual raise above it wins."""
    recorded = memory.metadata.get(BASE_IMPORTANCE_KEY)
    if isinstance(recorded, bool) or not isinstance(recorded, (int, float)) or not math.isfinite(recorded):
        return memory.importance
    return max(memory.importance, min(MAX_IMPORTANCE, int(recorded)))


def decay_age_days(memory: Memory, now: float | None = None, access_grace_days: float = DEFAULT_ACCESS_GRACE_DAYS) -> float:
    """Age that drives decay: creation age, shortened by a recent access."""
    now = time.time() if now is None else now
    age = memory.age_days(now)
    since_access = memory.days_since_access(now)
    if since_access is None:
        return age
    return min(age, since_access + max(0.0, access_grace_days))


def calculate_decay(
    memory: Memory,
    half_life_days: float | None = None,
    now: float | None = None,
    access_grace_days: float = DEFAULT_ACCESS_GRACE_DAYS,
    shadow_half_life_days: float = SHADOW_HALF_LIFE_DAYS,
) -> float:
    """
    Decayed importance for a memory.

    Args:
        memory: Memory to evaluate
        half_life_days: Half-life override; when None, shadow memories use
            ``shadow_half_life_days`` and everything else the 30-day default
        now: Evaluation time (epoch seconds), defaults to the current time
        access_grace_days: Grace window added to days since last access
        shadow_half_life_days: Half-life for shadow memories without override

    Returns:
        Float in [1, memory.importance], decayed from ``base_importance``;
        foundational memories return their importance unchanged
    """
    if memory.is_foundational:
        return float(memory.importance)

    if half_life_days is None:
        half_life_days = shadow_half_life_days if memory.memory_type == "shadow" else DEFAULT_HALF_LIFE_DAYS

    decayed = decay_importance(
        base_importance(memory),
        decay_age_days(memory, now, access_grace_days),
        memory.access_count,
        half_life_days,
    )
    return min(float(memory.importance), decayed)
