"""Data models for memories, ranked results, and maintenance reports."""

from .maintenance import ConsolidationCandidate, ContradictionCandidate, MaintenanceReport, PlannedOperation
from .memory import Memory, ScoredMemory

__all__ = [
    "ConsolidationCandidate",
    "ContradictionCandidate",
    "MaintenanceReport",
    "Memory",
    "PlannedOperation",
    "ScoredMemory",
]
