"""Store-backed matching engine.

Loads transactions and the document pool from the state store and hands
snapshots to the pure ranking and combination functions. Unknown
transaction ids yield empty results rather than errors.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..schemas.models import DocumentMatch, MultipleDocumentMatch
from .cancellation import CancellationToken
from .combinations import find_combinations
from .ranker import rank, rank_batch

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


class MatchingEngine:
    """Ranks documents and document combinations for stored transactions.

    Read-only: the engine never writes to the store. Attachments are made by
    the attachment and auto-assignment services.
    """

    def __init__(
        self,
        state_store: StateStore,
        config: MatchingConfig,
        max_workers: int | None = None,
    ) -> None:
        """Initialize the matching engine.

        Args:
            state_store: Source of transactions and documents.
            config: Matching configuration.
            max_workers: Worker threads for batch ranking.
        """
        self.store = state_store
        self.config = config
        self.max_workers = max_workers

    def rank(self, transaction_id: int, unconnected_only: bool = False) -> list[DocumentMatch]:
        """Ranked single-document candidates for a transaction."""
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning("Transaction %s not found, nothing to rank", transaction_id)
            return []

        pool = self.store.list_documents(unconnected_only=unconnected_only)
        matches = rank(transaction, pool, self.config, unconnected_only)
        logger.debug(
            "Transaction %s: %d of %d documents above %.2f",
            transaction_id,
            len(matches),
            len(pool),
            self.config.minimum_match_score,
        )
        return matches

    def rank_batch(
        self,
        transaction_ids: Iterable[int],
        unconnected_only: bool = False,
        cancel: CancellationToken | None = None,
    ) -> dict[int, list[DocumentMatch]]:
        """Rankings for many transactions against one pool fetch.

        Unknown ids are left out of the result.
        """
        transactions = self.store.list_transactions(transaction_ids=list(transaction_ids))
        if not transactions:
            return {}

        pool = self.store.list_documents(unconnected_only=unconnected_only)
        logger.info(
            "Batch ranking %d transactions against %d documents",
            len(transactions),
            len(pool),
        )
        return rank_batch(
            transactions,
            pool,
            self.config,
            unconnected_only=unconnected_only,
            max_workers=self.max_workers,
            cancel=cancel,
        )

    def find_combinations(
        self,
        transaction_id: int,
        unconnected_only: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[MultipleDocumentMatch]:
        """Multi-document combinations for a transaction, best first."""
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning("Transaction %s not found, no combinations", transaction_id)
            return []

        pool = self.store.list_documents(unconnected_only=unconnected_only)
        return find_combinations(transaction, pool, self.config, unconnected_only, cancel)
