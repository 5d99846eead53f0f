"""Amount scoring for single documents and document sets.

Amounts are compared by relative difference |doc - txn| / max(doc, txn) and
banded by the configured tolerances:

    <= exact  -> 1.0
    <= high   -> 0.8
    <= medium -> 0.5
    <= 3x medium -> linear trail from 0.2 down to 0.0
    beyond    -> 0.0

Transaction amounts are always taken as absolute values, so incoming and
outgoing payments score the same.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import TYPE_CHECKING

from ..schemas.models import AmountValidationResult, Document, Transaction
from .skonto import (
    COMMON_EARLY_PAYMENT_PERCENT,
    calculate_discounted_amount,
    has_valid_skonto,
    is_applicable_skonto,
)

if TYPE_CHECKING:
    from ..config import AmountToleranceConfig, MatchingConfig

logger = logging.getLogger(__name__)

SKONTO_MATCH_SCORE = 0.9
COMMON_DISCOUNT_MATCH_SCORE = 0.85


def best_document_amount(document: Document) -> Decimal | None:
    """Pick the document amount to compare against.

    Priority: total, sub_total + tax_amount, sub_total, tax_amount. The first
    non-zero candidate wins; the result is an absolute value.
    """
    candidates: list[Decimal | None] = [document.total]
    if document.sub_total is not None and document.tax_amount is not None:
        candidates.append(document.sub_total + document.tax_amount)
    candidates.extend([document.sub_total, document.tax_amount])

    for amount in candidates:
        if amount is not None and amount != 0:
            return abs(amount)
    return None


def skonto_adjusted_amount(document: Document) -> Decimal | None:
    """Best amount reduced by the document's Skonto, when applicable."""
    amount = best_document_amount(document)
    if amount is None or not is_applicable_skonto(document.skonto):
        return amount
    return calculate_discounted_amount(amount, document.skonto)


def relative_difference(a: Decimal, b: Decimal) -> float:
    """|a - b| relative to the larger of the two (both positive)."""
    larger = max(a, b)
    if larger == 0:
        return 0.0
    return float(abs(a - b) / larger)


def band_score(ratio: float, tolerance: AmountToleranceConfig) -> float:
    """Map a relative difference onto the tolerance bands."""
    if ratio <= tolerance.exact:
        return 1.0
    if ratio <= tolerance.high:
        return 0.8
    if ratio <= tolerance.medium:
        return 0.5
    if ratio <= tolerance.medium * 3:
        excess = ratio - tolerance.medium
        return max(0.0, 0.2 * (1 - excess / (2 * tolerance.medium)))
    return 0.0


def score_amount(transaction: Transaction, document: Document, config: MatchingConfig) -> float:
    """Score how well a document amount explains the transaction amount."""
    txn_amount = transaction.absolute_amount
    doc_amount = best_document_amount(document)
    if not txn_amount or doc_amount is None:
        return 0.0

    tolerance = config.amount
    if relative_difference(doc_amount, txn_amount) <= tolerance.exact:
        return 1.0

    # Paid with the document's own Skonto
    if has_valid_skonto(document.skonto):
        discounted = calculate_discounted_amount(doc_amount, document.skonto)
        if discounted and relative_difference(discounted, txn_amount) <= tolerance.exact:
            return SKONTO_MATCH_SCORE

    # Paid with the usual 3% early-payment discount
    discounted = calculate_discounted_amount(doc_amount, COMMON_EARLY_PAYMENT_PERCENT)
    if discounted and relative_difference(discounted, txn_amount) <= tolerance.exact:
        return COMMON_DISCOUNT_MATCH_SCORE

    return band_score(relative_difference(doc_amount, txn_amount), tolerance)


def combined_amount(documents: Iterable[Document]) -> Decimal:
    """Sum of the best amounts of a document set (documents without one are skipped)."""
    total = Decimal("0")
    for document in documents:
        amount = best_document_amount(document)
        if amount is not None:
            total += amount
    return total


def multiple_amount_score(
    transaction: Transaction,
    documents: Sequence[Document],
    config: MatchingConfig,
) -> float:
    """Score the combined amount of a document set against the transaction.

    Both the raw sum and the Skonto-adjusted sum are tried; the better band wins.
    """
    txn_amount = transaction.absolute_amount
    if not txn_amount or not documents:
        return 0.0

    raw_total = Decimal("0")
    adjusted_total = Decimal("0")
    valid = 0
    for document in documents:
        amount = best_document_amount(document)
        if amount is None:
            continue
        valid += 1
        raw_total += amount
        adjusted_total += skonto_adjusted_amount(document) or amount

    if valid == 0:
        return 0.0

    score = band_score(relative_difference(raw_total, txn_amount), config.amount)
    if adjusted_total != raw_total and adjusted_total > 0:
        adjusted = band_score(relative_difference(adjusted_total, txn_amount), config.amount)
        score = max(score, adjusted)
    return score


def validate_amounts(
    transaction_amount: Decimal,
    documents: Sequence[Document],
    config: MatchingConfig,
) -> AmountValidationResult:
    """Compare a document set's combined amount with a transaction amount.

    Produces warnings and recommendations only; callers never reject on the
    outcome.
    """
    txn_amount = abs(transaction_amount)
    result = AmountValidationResult(transaction_amount=txn_amount)

    if not documents:
        result.warnings.append("Document set is empty")
        result.recommendations.append("No documents provided for validation")
        return result

    total = Decimal("0")
    for document in documents:
        amount = best_document_amount(document)
        if amount is None:
            continue
        result.valid_document_count += 1
        if is_applicable_skonto(document.skonto):
            amount = calculate_discounted_amount(amount, document.skonto)
            result.skonto_applied_count += 1
        total += amount

    if result.valid_document_count == 0:
        result.warnings.append("No documents have valid amounts")
        result.recommendations.append(
            "Check the documents for missing total or sub-total amounts"
        )
        return result

    ignored = len(documents) - result.valid_document_count
    if ignored:
        result.warnings.append(f"{ignored} document(s) have no amount and were ignored")

    result.total_document_amount = total
    result.amount_difference = total - txn_amount

    if txn_amount == 0:
        result.warnings.append("Transaction amount is zero")
        result.has_significant_overage = total > 0
        return result

    result.percentage_difference = float(result.amount_difference / txn_amount)
    thresholds = config.validation

    if result.percentage_difference > thresholds.overage_threshold:
        result.has_significant_overage = True
        result.warnings.append(
            f"Combined document amount {total:.2f} significantly exceeds transaction "
            f"amount {txn_amount:.2f} by {result.percentage_difference:.1%}"
        )
        result.recommendations.append("Some documents may belong to different transactions")
    elif result.percentage_difference < -thresholds.underage_threshold:
        result.has_significant_underage = True
        result.warnings.append(
            f"Combined document amount {total:.2f} is significantly less than transaction "
            f"amount {txn_amount:.2f} by {-result.percentage_difference:.1%}"
        )
        result.recommendations.append("Documents may be missing from this combination")

    if result.skonto_applied_count:
        result.recommendations.append(
            f"Skonto applied to {result.skonto_applied_count} document(s); "
            "verify the discount was actually taken"
        )

    logger.debug(
        "Validated %d document(s): total=%s txn=%s diff=%.4f",
        result.valid_document_count,
        total,
        txn_amount,
        result.percentage_difference,
    )
    return result
