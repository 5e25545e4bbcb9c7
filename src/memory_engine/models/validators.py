"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped numbers, identifier
constraints, and Literal enums so every model speaks the same language.
"""

from __future__ import annotations

import math
from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | set | None`` and return a clean, de-duplicated ``list[str]``.

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "a"]`` → ``["a", "b"]``
    * ``None`` → ``[]``
    """
    if v is None:
        return []
    if isinstance(v, str):
        items: list[Any] = v.split(",")
    elif isinstance(v, (list, tuple, set, frozenset)):
        items = sorted(v) if isinstance(v, (set, frozenset)) else list(v)
    else:
        return []
    seen: dict[str, None] = {}
    for item in items:
        if item is None:
            continue
        s = str(item).strip()
        if s:
            seen.setdefault(s, None)
    return list(seen)


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list, set, or None; always outputs list[str]."""


# ---------------------------------------------------------------------------
# Numeric types (clamped, never rejected)
# ---------------------------------------------------------------------------

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 5


def clamp_importance(v: Any) -> int:
    """Coerce to int and clamp into [1, 5]. Non-numeric input falls back to 3."""
    try:
        value = float(v)
    except (TypeError, ValueError):
        return 3
    if not math.isfinite(value):
        return MAX_IMPORTANCE if value > 0 else MIN_IMPORTANCE
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(round(value))))


def clamp_unit(v: Any) -> float | None:
    """Clamp a float into [0.0, 1.0]; ``None`` passes through."""
    if v is None:
        return None
    value = float(v)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def clamp_non_negative(v: Any) -> int:
    """Counts: negative or missing values become 0."""
    try:
        return max(0, int(v))
    except (TypeError, ValueError):
        return 0


Importance = Annotated[int, BeforeValidator(clamp_importance)]
"""Integer importance, always within [1, 5]."""

UnitFloat = Annotated[float, BeforeValidator(clamp_unit)]
"""Float clamped to [0.0, 1.0], for confidences, similarities."""

NonNegativeInt = Annotated[int, BeforeValidator(clamp_non_negative)]
"""Integer ≥ 0, for access counts."""


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

MemoryId = Annotated[str, Field(min_length=1)]
"""Non-empty stable memory identifier."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

MemoryType = Literal[
    "decision",
    "pattern",
    "learning",
    "context",
    "preference",
    "todo",
    "reference",
    "summary",
    "foundational",
    "shadow",
]
MemoryLayer = Literal["foundational", "long_term", "working"]
ConflictType = Literal["temporal", "direct"]
ConflictSignal = Literal["supersedes", "change", "content", "negation"]
MaintenanceOperation = Literal["consolidate", "contradiction", "decay", "prune"]
PlannedOperationKind = Literal["update_importance", "delete", "save_merged", "supersede"]
MaintenanceState = Literal["idle", "running", "dry_run_complete", "applied", "failed"]

MEMORY_TYPES: tuple[str, ...] = MemoryType.__args__  # type: ignore[attr-defined]
MAINTENANCE_OPERATIONS: tuple[str, ...] = MaintenanceOperation.__args__  # type: ignore[attr-defined]
