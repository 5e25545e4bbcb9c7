"""Exception types raised across collaborator boundaries.

Bad inputs (too few memories, empty queries) yield empty results and
out-of-range parameters are clamped, so neither has an exception type.
"""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for memory engine errors."""


class CollaboratorError(MemoryEngineError):
    """A similarity or persistence collaborator call failed."""

    def __init__(self, operation: str, cause: BaseException | None = None, detail: str | None = None):
        self.operation = operation
        self.cause = cause
        message = detail or (f"{operation} failed: {cause}" if cause is not None else f"{operation} failed")
        super().__init__(message)
