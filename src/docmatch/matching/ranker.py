"""Single and batch ranking of candidate documents.

Both entry points are pure functions over an in-memory document pool; the
store-bound MatchingEngine feeds them snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from ..schemas.models import Document, DocumentMatch, Transaction
from .cancellation import CancellationToken, is_cancelled
from .composite import CompositeScorer

if TYPE_CHECKING:
    from ..config import MatchingConfig

logger = logging.getLogger(__name__)


def candidate_pool(pool: Iterable[Document], unconnected_only: bool) -> list[Document]:
    if unconnected_only:
        return [d for d in pool if d.unconnected]
    return list(pool)


def rank(
    transaction: Transaction,
    pool: Iterable[Document],
    config: MatchingConfig,
    unconnected_only: bool = False,
) -> list[DocumentMatch]:
    """Score every candidate, drop those below minimum_match_score, sort descending.

    The sort is stable: equal scores keep the pool order.
    """
    scorer = CompositeScorer(config)
    matches = []
    for document in candidate_pool(pool, unconnected_only):
        match = scorer.score_document(transaction, document)
        if match.match_score >= config.minimum_match_score:
            matches.append(match)

    matches.sort(key=lambda m: m.match_score, reverse=True)
    return matches


def rank_batch(
    transactions: Sequence[Transaction],
    pool: Iterable[Document],
    config: MatchingConfig,
    unconnected_only: bool = False,
    max_workers: int | None = None,
    cancel: CancellationToken | None = None,
) -> dict[int, list[DocumentMatch]]:
    """Rank many transactions against one shared pool snapshot.

    Each result equals rank(t, pool) for the same transaction. Transactions
    not started before cancellation are absent from the returned mapping.

    Args:
        transactions: Transactions to rank.
        pool: Candidate documents; copied once into an immutable tuple.
        config: Matching configuration.
        unconnected_only: Restrict candidates to unattached documents.
        max_workers: Worker threads; 1 (or less) runs sequentially.
        cancel: Optional cancellation token checked per transaction.
    """
    snapshot = tuple(pool)
    results: dict[int, list[DocumentMatch]] = {}

    def rank_one(transaction: Transaction) -> list[DocumentMatch] | None:
        if is_cancelled(cancel):
            return None
        return rank(transaction, snapshot, config, unconnected_only)

    if max_workers is not None and max_workers <= 1:
        for transaction in transactions:
            ranked = rank_one(transaction)
            if ranked is None:
                break
            results[transaction.id] = ranked
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = []
            for transaction in transactions:
                if is_cancelled(cancel):
                    break
                futures.append((transaction.id, executor.submit(rank_one, transaction)))

            for transaction_id, future in futures:
                ranked = future.result()
                if ranked is not None:
                    results[transaction_id] = ranked

    if is_cancelled(cancel):
        logger.info("Batch ranking cancelled after %d of %d transactions", len(results), len(transactions))
    else:
        logger.debug("Ranked %d transactions against %d documents", len(results), len(snapshot))
    return results
