"""
Stored memory and ranked search hit.

Creation time is carried both as an epoch float and as an ISO-8601 string;
the validator keeps the two in step so storage backends can use either.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Self

from dateutil import parser as dateutil_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .validators import (
    Importance,
    MemoryId,
    MemoryLayer,
    MemoryType,
    NonNegativeInt,
    Tags,
    UnitFloat,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def _epoch_from_iso(text: str) -> float:
    """Parse ISO-8601 into epoch seconds. Naive values are taken as UTC."""
    parsed = dateutil_parser.isoparse(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _iso_from_epoch(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, timezone.utc).isoformat().replace("+00:00", "Z")


def _resolve_created(epoch: float | None, iso: str | None, fallback: float) -> tuple[float, str]:
    # Epoch is authoritative; a bad ISO string degrades to the fallback clock.
    if epoch is not None:
        return epoch, _iso_from_epoch(epoch)
    if iso:
        try:
            return _epoch_from_iso(iso), iso
        except (ValueError, OverflowError) as exc:
            logger.warning("Unparseable created_at_iso %r (%s); stamping current time", iso, exc)
    return fallback, _iso_from_epoch(fallback)


def _coerce_timestamp(v: Any) -> float | None:
    """Accept epoch floats, ISO strings, or datetimes for optional timestamp fields."""
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.timestamp()
    if isinstance(v, str):
        try:
            return float(v)
        except ValueError:
            return _epoch_from_iso(v)
    value = float(v)
    return value if math.isfinite(value) else None


class Memory(BaseModel):
    """A single typed memory with validated fields."""

    model_config = ConfigDict(populate_by_name=True)

    id: MemoryId
    content: str = Field(min_length=1)
    memory_type: MemoryType = Field(default="context", alias="type")
    tags: Tags = []
    importance: Importance = 3

    created_at: float | None = None
    created_at_iso: str | None = None
    last_accessed: float | None = None

    # Bitemporal truth window
    valid_from: float | None = None
    valid_until: float | None = None

    supersedes: str | None = None
    superseded_by: str | None = None
    related_memories: Tags = []

    access_count: NonNegativeInt = 0
    project: str | None = None
    session_id: str | None = None
    created_by: str | None = None
    confidence: UnitFloat | None = None
    layer: MemoryLayer = "long_term"
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("last_accessed", "valid_from", "valid_until", "created_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> float | None:
        return _coerce_timestamp(v)

    @model_validator(mode="after")
    def normalise(self) -> Self:
        if self.supersedes is not None and self.supersedes == self.id:
            raise ValueError(f"memory {self.id!r} cannot supersede itself")
        self.created_at, self.created_at_iso = _resolve_created(self.created_at, self.created_at_iso, time.time())
        self.related_memories = [rid for rid in self.related_memories if rid != self.id]
        return self

    @property
    def is_foundational(self) -> bool:
        return self.memory_type == "foundational"

    @property
    def is_live(self) -> bool:
        """True while the memory is asserted as currently true (valid_from set, valid_until unset)."""
        return self.valid_from is not None and self.valid_until is None

    def age_days(self, now: float | None = None) -> float:
        """Days since creation; future timestamps count as age 0."""
        now = time.time() if now is None else now
        return max(0.0, (now - (self.created_at or now)) / SECONDS_PER_DAY)

    def days_since_access(self, now: float | None = None) -> float | None:
        if self.last_accessed is None:
            return None
        now = time.time() if now is None else now
        return max(0.0, (now - self.last_accessed) / SECONDS_PER_DAY)

    def touch(self, now: float | None = None) -> None:
        """Record an access."""
        self.last_accessed = time.time() if now is None else now
        self.access_count += 1

    def to_dict(self) -> dict[str, Any]:
        """Storage form: plain JSON-safe values keyed as stores expect (``type``, not ``memory_type``)."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        """Rebuild from storage form.

        A legacy ``timestamp`` stands in for creation time when neither
        ``created_at`` field is present. Keys the model does not know end up
        in ``metadata``.
        """
        known = _storage_keys()
        fields = {k: v for k, v in data.items() if k in known and v is not None}
        fields["metadata"] = {
            **(data.get("metadata") or {}),
            **{k: v for k, v in data.items() if k not in known and k != "timestamp"},
        }
        if "created_at" not in fields and "created_at_iso" not in fields and data.get("timestamp"):
            fields["created_at"] = data["timestamp"]
        return cls(**fields)


class ScoredMemory(BaseModel):
    """A ranked search hit that keeps each relevance signal for transparency."""

    model_config = ConfigDict(populate_by_name=True)

    memory: Memory
    score: float
    semantic_score: float = 0.0
    bm25_score: float = 0.0
    graph_boost: float = 0.0
    graph_distance: int | None = None

    @property
    def id(self) -> str:
        return self.memory.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "score": self.score,
            "semantic_score": self.semantic_score,
            "bm25_score": self.bm25_score,
            "graph_boost": self.graph_boost,
            "graph_distance": self.graph_distance,
        }


def _storage_keys() -> frozenset[str]:
    return frozenset(info.alias or name for name, info in Memory.model_fields.items())
