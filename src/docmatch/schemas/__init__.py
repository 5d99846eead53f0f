"""
SSOT (Single Source of Truth) schemas for the matching engine.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .models import (
    AmountValidationResult,
    AssignmentOutcome,
    AssignmentStatus,
    AttachmentRecord,
    AttachResult,
    AutoAssignResult,
    CombinationBreakdown,
    ConfidenceLevel,
    Document,
    DocumentMatch,
    MatchScoreBreakdown,
    MatchStrategy,
    MultipleDocumentMatch,
    Transaction,
)

__all__ = [
    "AmountValidationResult",
    "AssignmentOutcome",
    "AssignmentStatus",
    "AttachmentRecord",
    "AttachResult",
    "AutoAssignResult",
    "CombinationBreakdown",
    "ConfidenceLevel",
    "Document",
    "DocumentMatch",
    "MatchScoreBreakdown",
    "MatchStrategy",
    "MultipleDocumentMatch",
    "Transaction",
]
