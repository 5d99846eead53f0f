"""
Caching wrappers around the matching engine and the attachment service.

The wrappers hold the real objects and expose the same methods. Reads are
served from the ResultCache; anything that changes attachments invalidates
the affected entries after it succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from ..matching.cancellation import CancellationToken, is_cancelled
from ..schemas.models import AssignmentStatus, AutoAssignResult, DocumentMatch, MultipleDocumentMatch
from .result_cache import ResultCache

if TYPE_CHECKING:
    from ..matching.engine import MatchingEngine
    from ..services.attachments import (
        AttachmentResult,
        AttachmentService,
        AttachmentSummary,
        BulkAttachmentResult,
    )
    from ..services.auto_assign import AutoAssignService

logger = logging.getLogger(__name__)


class CachedMatchingEngine:
    """MatchingEngine with cached reads and invalidating auto-assignment."""

    def __init__(
        self,
        engine: MatchingEngine,
        cache: ResultCache,
        auto_assigner: AutoAssignService | None = None,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.auto_assigner = auto_assigner

    def rank(self, transaction_id: int, unconnected_only: bool = False) -> list[DocumentMatch]:
        key = self.cache.single_key(transaction_id, unconnected_only)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit: ranking for transaction %s", transaction_id)
            return list(cached)

        matches = self.engine.rank(transaction_id, unconnected_only)
        self.cache.put(key, list(matches), self.cache.single_ttl, {transaction_id})
        return matches

    def find_combinations(
        self,
        transaction_id: int,
        unconnected_only: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[MultipleDocumentMatch]:
        key = self.cache.combination_key(transaction_id, unconnected_only)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit: combinations for transaction %s", transaction_id)
            return list(cached)

        combinations = self.engine.find_combinations(transaction_id, unconnected_only, cancel)
        # A cancelled search may be incomplete
        if not is_cancelled(cancel):
            self.cache.put(key, list(combinations), self.cache.combination_ttl, {transaction_id})
        return combinations

    def rank_batch(
        self,
        transaction_ids: Iterable[int],
        unconnected_only: bool = False,
        cancel: CancellationToken | None = None,
    ) -> dict[int, list[DocumentMatch]]:
        ids = list(transaction_ids)
        document_ids = [d.id for d in self.engine.store.list_documents(unconnected_only=unconnected_only)]
        key = self.cache.batch_key(ids, document_ids, unconnected_only)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit: batch ranking of %d transactions", len(ids))
            return {t: list(m) for t, m in cached.items()}

        results = self.engine.rank_batch(ids, unconnected_only, cancel)
        if not is_cancelled(cancel):
            self.cache.put(
                key,
                {t: list(m) for t, m in results.items()},
                self.cache.batch_ttl,
                ids,
            )
        return results

    def auto_assign(self, transaction_id: int) -> AutoAssignResult:
        """Auto-assign one transaction, bypassing cached reads."""
        result = self._auto_assigner().auto_assign(transaction_id)
        self._invalidate_assigned(result)
        return result

    def auto_assign_batch(
        self,
        transaction_ids: Iterable[int] | None = None,
        cancel: CancellationToken | None = None,
    ) -> AutoAssignResult:
        """Auto-assign many transactions, bypassing cached reads."""
        result = self._auto_assigner().auto_assign_batch(transaction_ids, cancel)
        self._invalidate_assigned(result)
        return result

    def _auto_assigner(self) -> AutoAssignService:
        if self.auto_assigner is None:
            raise RuntimeError("CachedMatchingEngine was created without an AutoAssignService")
        return self.auto_assigner

    def _invalidate_assigned(self, result: AutoAssignResult) -> None:
        assigned = [
            o.transaction_id for o in result.outcomes if o.status == AssignmentStatus.ASSIGNED
        ]
        if not assigned:
            return
        for transaction_id in assigned:
            self.cache.invalidate_transaction(transaction_id)
        self.cache.invalidate_unconnected()
        logger.debug("Invalidated cached results for %d assigned transactions", len(assigned))


class CachedAttachmentService:
    """AttachmentService that invalidates cached results after changes."""

    def __init__(self, service: AttachmentService, cache: ResultCache) -> None:
        self.service = service
        self.cache = cache

    def attach(
        self,
        transaction_id: int,
        document_id: int,
        is_automatic: bool = False,
        attached_by: str | None = None,
    ) -> AttachmentResult:
        result = self.service.attach(transaction_id, document_id, is_automatic, attached_by)
        if result.success:
            self._invalidate(transaction_id)
        return result

    def attach_documents(
        self,
        transaction_id: int,
        document_ids: Sequence[int],
        is_automatic: bool = False,
        attached_by: str | None = None,
        atomic: bool = False,
    ) -> BulkAttachmentResult:
        result = self.service.attach_documents(
            transaction_id, document_ids, is_automatic, attached_by, atomic
        )
        if result.attached:
            self._invalidate(transaction_id)
        return result

    def detach(self, transaction_id: int, document_id: int) -> AttachmentResult:
        result = self.service.detach(transaction_id, document_id)
        if result.success:
            self._invalidate(transaction_id)
        return result

    def get_summary(self, transaction_id: int) -> AttachmentSummary | None:
        return self.service.get_summary(transaction_id)

    def _invalidate(self, transaction_id: int) -> None:
        self.cache.invalidate_transaction(transaction_id)
        self.cache.invalidate_unconnected()
