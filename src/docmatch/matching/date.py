"""Date scoring: how close a document date is to the booking date."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from ..schemas.models import Document, Transaction

if TYPE_CHECKING:
    from ..config import MatchingConfig


def document_date(document: Document) -> date | None:
    """Invoice date, falling back to the date derived from the folder."""
    return document.invoice_date or document.invoice_date_from_folder


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_between(a: date | datetime, b: date | datetime) -> int:
    """Absolute calendar-day difference."""
    return abs((_as_date(a) - _as_date(b)).days)


def score_date(transaction: Transaction, document: Document, config: MatchingConfig) -> float:
    """Score the day difference between transaction and document.

    <= exact_days -> 1.0, <= high_days -> 0.8, <= medium_days -> 0.5, then a
    linear decay from 0.2 to 0.0 until 3x medium_days.
    """
    doc_date = document_date(document)
    if doc_date is None:
        return 0.0

    days = days_between(transaction.transaction_date, doc_date)
    bands = config.date

    if days <= bands.exact_days:
        return 1.0
    if days <= bands.high_days:
        return 0.8
    if days <= bands.medium_days:
        return 0.5
    if days <= bands.medium_days * 3:
        excess = days - bands.medium_days
        return max(0.0, 0.2 * (1 - excess / (2 * bands.medium_days)))
    return 0.0
