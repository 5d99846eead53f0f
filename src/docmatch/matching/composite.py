"""Composite scoring: weighted sum of the four criteria with a strong-signal bonus."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..schemas.models import Document, DocumentMatch, MatchScoreBreakdown, Transaction
from .amount import score_amount
from .date import score_date
from .reference import score_reference
from .vendor import score_vendor

if TYPE_CHECKING:
    from ..config import MatchingConfig


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class CompositeScorer:
    """Combines criterion scores into one score in [0, 1].

    composite = sum(score x weight), multiplied by bonus_multiplier when any
    criterion reaches bonus_threshold, then clamped. Pure: identical inputs
    always give identical output.
    """

    def __init__(self, config: MatchingConfig) -> None:
        self.config = config

    def combine(
        self,
        amount: float,
        date: float,
        vendor: float,
        reference: float,
    ) -> MatchScoreBreakdown:
        cfg = self.config
        weighted = (
            amount * cfg.amount_weight
            + date * cfg.date_weight
            + vendor * cfg.vendor_weight
            + reference * cfg.reference_weight
        )
        bonus = max(amount, date, vendor, reference) >= cfg.bonus_threshold
        composite = weighted * cfg.bonus_multiplier if bonus else weighted

        return MatchScoreBreakdown(
            amount_score=amount,
            date_score=date,
            vendor_score=vendor,
            reference_score=reference,
            weighted_score=weighted,
            composite_score=clamp(composite),
            bonus_applied=bonus,
        )

    def score_breakdown(self, transaction: Transaction, document: Document) -> MatchScoreBreakdown:
        """Run all four criterion scorers for one pair."""
        return self.combine(
            amount=score_amount(transaction, document, self.config),
            date=score_date(transaction, document, self.config),
            vendor=score_vendor(transaction, document, self.config),
            reference=score_reference(transaction, document, self.config),
        )

    def score_document(self, transaction: Transaction, document: Document) -> DocumentMatch:
        breakdown = self.score_breakdown(transaction, document)
        return DocumentMatch(
            document=document,
            match_score=breakdown.composite_score,
            breakdown=breakdown,
        )
