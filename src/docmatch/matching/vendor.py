"""Vendor scoring against the transaction's counterparty fields."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..schemas.models import Document, Transaction
from .text import levenshtein_similarity, normalize_for_matching, significant_words

if TYPE_CHECKING:
    from ..config import MatchingConfig

FUZZY_FLOOR = 0.6
FUZZY_CEILING = 0.9
WORD_OVERLAP_CAP = 0.5


def score_vendor_text(field: str | None, vendor: str | None, fuzzy_threshold: float = 0.8) -> float:
    """Score one transaction field against a vendor name.

    Hierarchy: exact 1.0, field contains vendor 0.8, vendor contains field
    0.7, fuzzy similarity scaled into [0.6, 0.9], word overlap up to 0.5.
    """
    field_norm = normalize_for_matching(field)
    vendor_norm = normalize_for_matching(vendor)
    if not field_norm or not vendor_norm:
        return 0.0

    if field_norm == vendor_norm:
        return 1.0
    if vendor_norm in field_norm:
        return 0.8
    if field_norm in vendor_norm:
        return 0.7

    similarity = levenshtein_similarity(field_norm, vendor_norm, normalize=False)
    if similarity >= fuzzy_threshold:
        if fuzzy_threshold >= 1.0:
            return FUZZY_CEILING
        scaled = FUZZY_FLOOR + (similarity - fuzzy_threshold) * 0.3 / (1 - fuzzy_threshold)
        return min(scaled, FUZZY_CEILING)

    field_words = significant_words(field_norm)
    vendor_words = significant_words(vendor_norm)
    if field_words and vendor_words:
        overlap = len(field_words & vendor_words) / len(field_words | vendor_words)
        if overlap > 0:
            return min(overlap * WORD_OVERLAP_CAP, WORD_OVERLAP_CAP)

    return 0.0


def score_vendor(transaction: Transaction, document: Document, config: MatchingConfig) -> float:
    """Best vendor score over counterparty and sender/receiver."""
    if not document.vendor_name or not document.vendor_name.strip():
        return 0.0

    threshold = config.vendor.fuzzy_threshold
    scores = [
        score_vendor_text(field, document.vendor_name, threshold)
        for field in transaction.vendor_fields
    ]
    return max(scores, default=0.0)


def are_likely_same_vendor(a: str | None, b: str | None, threshold: float = 0.7) -> bool:
    """True if two vendor names probably denote the same company."""
    return score_vendor_text(a, b) >= threshold
