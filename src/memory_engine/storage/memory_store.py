"""
In-process reference implementation of ``MemoryStore``.

Keeps memories in a dict guarded by an ``asyncio.Lock``. Useful for tests,
for the CLI (backed by a JSON file), and as a reference for real backends.
Writes are last-write-wins; there is no optimistic concurrency check.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any

from ..models.memory import Memory

logger = logging.getLogger(__name__)

# Fields a partial update may not touch
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "created_at_iso"})


class MemoryNotFoundError(KeyError):
    """Raised when an operation targets an unknown memory id."""


class InMemoryMemoryStore:
    """Dict-backed memory store."""

    def __init__(self, memories: list[Memory] | None = None):
        self._memories: dict[str, Memory] = {}
        self._lock = asyncio.Lock()
        for memory in memories or []:
            self._memories[memory.id] = memory

    def __len__(self) -> int:
        return len(self._memories)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._memories

    def snapshot(self) -> list[Memory]:
        """Copies of every stored memory, in insertion order."""
        return [m.model_copy(deep=True) for m in self._memories.values()]

    async def get(self, memory_id: str) -> Memory | None:
        memory = self._memories.get(memory_id)
        return memory.model_copy(deep=True) if memory is not None else None

    async def save(self, memory: Memory) -> str:
        async with self._lock:
            if memory.id in self._memories:
                # Never overwrite an existing memory on save
                memory = memory.model_copy(update={"id": f"mem_{uuid.uuid4().hex[:12]}"})
            self._memories[memory.id] = memory.model_copy(deep=True)
            logger.debug("Saved memory %s", memory.id)
            return memory.id

    async def update(self, memory_id: str, fields: dict[str, Any]) -> None:
        async with self._lock:
            current = self._memories.get(memory_id)
            if current is None:
                raise MemoryNotFoundError(memory_id)
            data = current.to_dict()
            data.update({k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS})
            if "memory_type" in data:
                data["type"] = data.pop("memory_type")
            self._memories[memory_id] = Memory.from_dict(data)

    async def delete(self, memory_id: str) -> None:
        async with self._lock:
            if self._memories.pop(memory_id, None) is None:
                raise MemoryNotFoundError(memory_id)

    async def supersede(self, old_id: str, new_id: str) -> None:
        async with self._lock:
            old = self._memories.get(old_id)
            new = self._memories.get(new_id)
            if old is None or new is None:
                raise MemoryNotFoundError(old_id if old is None else new_id)
            if old_id == new_id:
                raise ValueError(f"memory {old_id!r} cannot supersede itself")
            if old.superseded_by == new_id:
                return
            now = time.time()
            self._memories[old_id] = old.model_copy(
                update={"superseded_by": new_id, "valid_until": old.valid_until or now}
            )
            if new.supersedes is None:
                # a merged memory replacing several originals records the first
                self._memories[new_id] = new.model_copy(update={"supersedes": old_id})
            logger.info("Memory %s superseded by %s", old_id, new_id)

    async def list_memories(self, limit: int | None = None) -> list[Memory]:
        memories = list(self._memories.values())
        if limit is not None:
            memories = memories[: max(0, limit)]
        return [m.model_copy(deep=True) for m in memories]

    # -- JSON persistence ---------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "InMemoryMemoryStore":
        """Load from a JSON file holding a list of memory dicts (or ``{"memories": [...]}``)."""
        path = Path(path)
        if not path.exists():
            logger.warning("Store file %s does not exist, starting empty", path)
            return cls()
        raw = json.loads(path.read_text(encoding="utf-8"))
        items = raw.get("memories", []) if isinstance(raw, dict) else raw
        return cls([Memory.from_dict(item) for item in items])

    def dump(self, path: str | Path) -> None:
        """Write every memory to ``path`` as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"memories": [m.to_dict() for m in self._memories.values()]}
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
