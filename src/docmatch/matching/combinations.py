"""Multi-document combination search.

One bank transfer often pays several invoices at once. The finder looks for
sets of 2-5 documents that jointly explain a transaction, using three
independent strategies whose results are merged:

- reference: invoice numbers quoted in the transaction note
- amount: document subsets whose amounts add up to the payment
- hybrid: subsets of reference-like documents that also add up

Enumeration is bounded (per-size caps and a cap on candidate documents), so
the search gives up completeness for predictable latency.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar

from ..confidence import confidence_level
from ..schemas.models import (
    CombinationBreakdown,
    Document,
    MatchScoreBreakdown,
    MatchStrategy,
    MultipleDocumentMatch,
    Transaction,
)
from .amount import best_document_amount, combined_amount, multiple_amount_score, validate_amounts
from .cancellation import CancellationToken, is_cancelled
from .composite import CompositeScorer, clamp
from .ranker import candidate_pool
from .reference import (
    combination_reference_score,
    extract_reference_tokens,
    matched_tokens,
    token_matches_invoice,
)

if TYPE_CHECKING:
    from ..config import MatchingConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Absolute difference under which a single document "is" the payment amount
EXACT_AMOUNT_EPSILON = 0.01
STRONG_REFERENCE_SCORE = 0.7


def enumerate_combinations(
    items: Sequence[T],
    size: int,
    limit: int | None = None,
) -> Iterator[tuple[T, ...]]:
    """Yield size-k combinations in lexicographic index order.

    Uses an explicit stack of chosen indices instead of recursion; stops
    after `limit` combinations.
    """
    n = len(items)
    if size <= 0 or size > n:
        return

    produced = 0
    stack = [0]
    while stack:
        if len(stack) == size:
            yield tuple(items[i] for i in stack)
            produced += 1
            if limit is not None and produced >= limit:
                return
            stack[-1] += 1

        # Drop positions that ran past their last valid index
        while stack and stack[-1] > n - size + len(stack) - 1:
            stack.pop()
            if stack:
                stack[-1] += 1

        if stack and len(stack) < size:
            stack.append(stack[-1] + 1)


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


class CombinationFinder:
    """Finds and ranks multi-document combinations for one transaction."""

    def __init__(self, config: MatchingConfig) -> None:
        self.config = config
        self.scorer = CompositeScorer(config)

    def find(
        self,
        transaction: Transaction,
        pool: Iterable[Document],
        unconnected_only: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[MultipleDocumentMatch]:
        """Run all strategies and return the top combinations, best first.

        Cancellation is checked before each strategy and each combination
        size; whatever was found up to that point is still deduplicated and
        returned.
        """
        candidates = candidate_pool(pool, unconnected_only)
        if len(candidates) < 2:
            return []

        individual = {d.id: self.scorer.score_breakdown(transaction, d) for d in candidates}

        found: list[MultipleDocumentMatch] = []
        for strategy in (self._by_reference, self._by_amount, self._hybrid):
            if is_cancelled(cancel):
                logger.info("Combination search for transaction %s cancelled", transaction.id)
                break
            found.extend(strategy(transaction, candidates, individual, cancel))

        results = self._deduplicate(found)
        logger.debug(
            "Transaction %s: %d combinations found, %d kept",
            transaction.id,
            len(found),
            len(results),
        )
        return results

    # === Strategies ===

    def _by_reference(
        self,
        transaction: Transaction,
        candidates: list[Document],
        individual: dict[int, MatchScoreBreakdown],
        cancel: CancellationToken | None,
    ) -> list[MultipleDocumentMatch]:
        tokens: list[str] = []
        for text in transaction.reference_texts:
            for token in extract_reference_tokens(text):
                if token not in tokens:
                    tokens.append(token)
        if not tokens:
            return []

        matching = [
            d
            for d in candidates
            if any(token_matches_invoice(t, d.invoice_number) for t in tokens)
        ]
        if len(matching) < 2:
            return []

        max_size = self.config.combinations.max_size
        if len(matching) > max_size:
            matching.sort(key=lambda d: individual[d.id].reference_score, reverse=True)
            matching = matching[:max_size]

        combos = self.config.combinations
        match = self._build(
            transaction,
            matching,
            individual,
            MatchStrategy.REFERENCE,
            bonus=combos.reference_bonus,
        )
        match.breakdown.reference_matches = len(matched_tokens(tokens, matching))
        match.breakdown.multiple_reference_bonus = round(combos.reference_bonus - 1.0, 4)
        logger.debug(
            "Reference strategy matched %d documents for transaction %s",
            len(matching),
            transaction.id,
        )
        return [match]

    def _by_amount(
        self,
        transaction: Transaction,
        candidates: list[Document],
        individual: dict[int, MatchScoreBreakdown],
        cancel: CancellationToken | None,
    ) -> list[MultipleDocumentMatch]:
        txn_amount = transaction.absolute_amount
        if not txn_amount:
            return []

        # A document larger than the payment (beyond tolerance) cannot be part of it
        ceiling = txn_amount * (1 + Decimal(str(self.config.amount.medium)))
        eligible = []
        for document in candidates:
            amount = best_document_amount(document)
            if amount is not None and amount <= ceiling:
                eligible.append(document)
        eligible = self._cap(eligible, individual)

        combos = self.config.combinations
        minimum = self.config.minimum_match_score
        results = []
        for size in range(2, min(combos.max_size, len(eligible)) + 1):
            if is_cancelled(cancel):
                break
            for combo in enumerate_combinations(eligible, size, combos.max_combinations_per_size):
                amount_score = multiple_amount_score(transaction, combo, self.config)
                if amount_score >= minimum:
                    results.append(
                        self._build(
                            transaction,
                            combo,
                            individual,
                            MatchStrategy.AMOUNT,
                            amount_score=amount_score,
                        )
                    )
        return results

    def _hybrid(
        self,
        transaction: Transaction,
        candidates: list[Document],
        individual: dict[int, MatchScoreBreakdown],
        cancel: CancellationToken | None,
    ) -> list[MultipleDocumentMatch]:
        combos = self.config.combinations
        referenced = [
            d
            for d in candidates
            if individual[d.id].reference_score >= combos.hybrid_min_reference_score
        ]
        referenced = self._cap(referenced, individual)
        if len(referenced) < 2:
            return []

        results = []
        for size in range(2, min(combos.hybrid_max_size, len(referenced)) + 1):
            if is_cancelled(cancel):
                break
            for combo in enumerate_combinations(
                referenced, size, combos.hybrid_max_combinations_per_size
            ):
                amount_score = multiple_amount_score(transaction, combo, self.config)
                if amount_score < combos.hybrid_min_amount_score:
                    continue
                reference_score = combination_reference_score(transaction, combo)
                if reference_score < combos.hybrid_min_combination_reference_score:
                    continue
                results.append(
                    self._build(
                        transaction,
                        combo,
                        individual,
                        MatchStrategy.HYBRID,
                        bonus=combos.hybrid_bonus,
                        amount_score=amount_score,
                        reference_score=reference_score,
                    )
                )
        return results

    # === Helpers ===

    def _cap(
        self,
        documents: list[Document],
        individual: dict[int, MatchScoreBreakdown],
    ) -> list[Document]:
        """Keep at most max_documents, preferring the best individual scores."""
        limit = self.config.combinations.max_documents
        if len(documents) <= limit:
            return documents
        ranked = sorted(documents, key=lambda d: individual[d.id].composite_score, reverse=True)
        return ranked[:limit]

    def _build(
        self,
        transaction: Transaction,
        documents: Sequence[Document],
        individual: dict[int, MatchScoreBreakdown],
        strategy: MatchStrategy,
        bonus: float = 1.0,
        amount_score: float | None = None,
        reference_score: float | None = None,
    ) -> MultipleDocumentMatch:
        if amount_score is None:
            amount_score = multiple_amount_score(transaction, documents, self.config)
        if reference_score is None:
            reference_score = combination_reference_score(transaction, documents)

        breakdown = self.scorer.combine(
            amount=amount_score,
            date=_mean(individual[d.id].date_score for d in documents),
            vendor=_mean(individual[d.id].vendor_score for d in documents),
            reference=reference_score,
        )
        score = clamp(breakdown.composite_score * bonus)

        txn_amount = transaction.absolute_amount
        exact_amount_matches = 0
        for document in documents:
            amount = best_document_amount(document)
            if amount is not None and abs(float(amount - txn_amount)) < EXACT_AMOUNT_EPSILON:
                exact_amount_matches += 1

        validation = validate_amounts(transaction.gross_amount, documents, self.config)

        return MultipleDocumentMatch(
            documents=tuple(documents),
            match_score=score,
            total_amount=combined_amount(documents),
            breakdown=CombinationBreakdown(
                amount_score=breakdown.amount_score,
                date_score=breakdown.date_score,
                vendor_score=breakdown.vendor_score,
                reference_score=breakdown.reference_score,
                composite_score=score,
                exact_amount_matches=exact_amount_matches,
                reference_matches=sum(
                    1
                    for d in documents
                    if individual[d.id].reference_score > STRONG_REFERENCE_SCORE
                ),
            ),
            strategy=strategy,
            confidence_level=confidence_level(score),
            warnings=list(validation.warnings),
        )

    def _deduplicate(self, found: list[MultipleDocumentMatch]) -> list[MultipleDocumentMatch]:
        """Best instance per document-id set, above the minimum, top N."""
        found = sorted(found, key=lambda m: m.match_score, reverse=True)
        seen: set[tuple[int, ...]] = set()
        results = []
        for match in found:
            if match.key in seen:
                continue
            seen.add(match.key)
            if match.match_score >= self.config.minimum_match_score:
                results.append(match)
        return results[: self.config.combinations.max_results]


def find_combinations(
    transaction: Transaction,
    pool: Iterable[Document],
    config: MatchingConfig,
    unconnected_only: bool = False,
    cancel: CancellationToken | None = None,
) -> list[MultipleDocumentMatch]:
    """Top combinations (at most max_results) for a transaction, best first."""
    return CombinationFinder(config).find(transaction, pool, unconnected_only, cancel)
