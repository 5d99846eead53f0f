"""
Automatic assignment of documents to transactions.

For each transaction the best single document and the best multi-document
combination are compared; the winner is attached when its score reaches the
auto-assign threshold. A batch run never raises: failures of one
transaction are logged and recorded, and the run moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..matching.amount import combined_amount
from ..matching.cancellation import CancellationToken, is_cancelled
from ..matching.combinations import find_combinations
from ..matching.ranker import rank
from ..matching.skonto import has_valid_skonto, net_amount_after_skonto
from ..schemas.models import (
    AssignmentOutcome,
    AssignmentStatus,
    AutoAssignResult,
    Document,
    Transaction,
)
from .attachments import AttachmentService

if TYPE_CHECKING:
    from ..config import Config
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

NO_CANDIDATES_MESSAGE = "No suitable document combinations found for automatic assignment"
SINGLE_STRATEGY = "single"


@dataclass
class _Candidate:
    """Best assignment candidate for one transaction."""

    documents: tuple[Document, ...]
    score: float
    strategy: str
    warnings: list[str]

    @property
    def document_ids(self) -> list[int]:
        return [d.id for d in self.documents]


class AutoAssignService:
    """Attaches the best-scoring documents to transactions without user input."""

    def __init__(
        self,
        state_store: StateStore,
        config: Config,
        attachments: AttachmentService | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            state_store: Transactions, documents and attachments.
            config: Full configuration (matching and auto-assign sections).
            attachments: Attachment service; built from the store if omitted.
        """
        self.store = state_store
        self.config = config
        self.attachments = attachments or AttachmentService(state_store, config.matching)

    @property
    def threshold(self) -> float:
        return self.config.auto_assign.threshold

    def auto_assign(self, transaction_id: int) -> AutoAssignResult:
        """Auto-assign a single transaction."""
        return self.auto_assign_batch([transaction_id])

    def auto_assign_batch(
        self,
        transaction_ids: Iterable[int] | None = None,
        cancel: CancellationToken | None = None,
    ) -> AutoAssignResult:
        """Auto-assign many transactions.

        Args:
            transaction_ids: Transactions to process. Defaults to every
                transaction without attachments.
            cancel: Checked before each transaction; a cancelled run returns
                what was processed so far.

        Returns:
            Complete result, even when individual transactions failed.
        """
        result = AutoAssignResult()

        if transaction_ids is None:
            try:
                ids = [t.id for t in self.store.list_transactions(unattached_only=True)]
            except Exception as e:
                logger.exception("Failed to list unattached transactions")
                result.errors.append(f"Failed to list transactions: {e}")
                return result
        else:
            ids = list(transaction_ids)

        if not ids:
            logger.info("No transactions to auto-assign")
            return result

        # One pool fetch per run; assigned documents are removed locally
        try:
            pool = self.store.list_documents(unconnected_only=True)
        except Exception as e:
            logger.exception("Failed to list unconnected documents")
            result.errors.append(f"Failed to list documents: {e}")
            return result
        logger.info("Auto-assigning %d transactions against %d documents", len(ids), len(pool))

        for transaction_id in ids:
            if is_cancelled(cancel):
                logger.info(
                    "Auto-assignment cancelled after %d of %d transactions",
                    result.total_processed,
                    len(ids),
                )
                break

            try:
                outcome = self.assign(transaction_id, pool)
            except Exception as e:
                logger.exception("Error auto-assigning transaction %s", transaction_id)
                outcome = AssignmentOutcome(
                    transaction_id=transaction_id,
                    status=AssignmentStatus.FAILED,
                    message=str(e),
                    error=f"Transaction {transaction_id}: {e}",
                )

            result.record(outcome)
            if outcome.status == AssignmentStatus.ASSIGNED:
                assigned = set(outcome.document_ids)
                pool = [d for d in pool if d.id not in assigned]

        logger.info(
            "Auto-assignment finished: %d processed, %d assigned, %d skipped, %d failed",
            result.total_processed,
            result.assigned_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    def assign(
        self,
        transaction_id: int,
        pool: Sequence[Document] | None = None,
    ) -> AssignmentOutcome:
        """Decide and persist the assignment for one transaction.

        Args:
            transaction_id: Transaction to assign.
            pool: Unconnected documents to choose from. Fetched from the
                store when omitted.
        """
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            message = f"Transaction {transaction_id} not found"
            logger.warning(message)
            return AssignmentOutcome(
                transaction_id, AssignmentStatus.FAILED, message=message, error=message
            )

        existing = self.store.count_attachments(transaction_id)
        if existing > 0:
            message = f"Transaction {transaction_id} is already attached to {existing} document(s)"
            logger.info("%s, skipping auto-assignment", message)
            return AssignmentOutcome(
                transaction_id, AssignmentStatus.FAILED, message=message, error=message
            )

        if pool is None:
            pool = self.store.list_documents(unconnected_only=True)

        candidate = self._best_candidate(transaction, pool)
        if candidate is None:
            logger.debug("Transaction %s: %s", transaction_id, NO_CANDIDATES_MESSAGE)
            return AssignmentOutcome(
                transaction_id, AssignmentStatus.SKIPPED, message=NO_CANDIDATES_MESSAGE
            )

        if candidate.score < self.threshold:
            message = (
                f"Best match score {candidate.score:.2f} is below "
                f"auto-assign threshold {self.threshold:.2f}"
            )
            logger.debug("Transaction %s: %s", transaction_id, message)
            return AssignmentOutcome(
                transaction_id,
                AssignmentStatus.SKIPPED,
                document_ids=candidate.document_ids,
                score=candidate.score,
                strategy=candidate.strategy,
                message=message,
            )

        return self._persist(transaction, candidate)

    def _best_candidate(
        self, transaction: Transaction, pool: Sequence[Document]
    ) -> _Candidate | None:
        """Better of the best single match and the best combination; single wins ties."""
        matching = self.config.matching
        best: _Candidate | None = None

        singles = rank(transaction, pool, matching, unconnected_only=True)
        if singles:
            top = singles[0]
            best = _Candidate((top.document,), top.match_score, SINGLE_STRATEGY, [])

        combinations = find_combinations(transaction, pool, matching, unconnected_only=True)
        if combinations:
            top_combo = combinations[0]
            if best is None or top_combo.match_score > best.score:
                best = _Candidate(
                    top_combo.documents,
                    top_combo.match_score,
                    top_combo.strategy.value,
                    list(top_combo.warnings),
                )
        return best

    def _persist(self, transaction: Transaction, candidate: _Candidate) -> AssignmentOutcome:
        auto_config = self.config.auto_assign
        bulk = self.attachments.attach_documents(
            transaction.id,
            candidate.document_ids,
            is_automatic=True,
            attached_by=auto_config.actor,
            atomic=auto_config.atomic_combinations,
        )

        warnings = [*candidate.warnings, *bulk.warnings]
        if not bulk.attached:
            message = f"No documents could be attached to transaction {transaction.id}"
            logger.warning(message)
            return AssignmentOutcome(
                transaction.id,
                AssignmentStatus.FAILED,
                document_ids=candidate.document_ids,
                score=candidate.score,
                strategy=candidate.strategy,
                message=message,
                warnings=warnings,
                error=message,
            )

        attached = [d for d in candidate.documents if d.id in bulk.attached]
        if len(attached) == 1 and candidate.strategy == SINGLE_STRATEGY:
            try:
                self._copy_tax_data(transaction, attached[0])
            except Exception as e:
                logger.exception("Failed to copy tax data to transaction %s", transaction.id)
                warnings.append(f"Tax data not copied from document {attached[0].id}: {e}")

        logger.info(
            "Auto-assigned %d document(s) to transaction %s (%s, score %.2f)",
            len(attached),
            transaction.id,
            candidate.strategy,
            candidate.score,
        )
        return AssignmentOutcome(
            transaction.id,
            AssignmentStatus.ASSIGNED,
            document_ids=[d.id for d in attached],
            total_amount=combined_amount(attached),
            score=candidate.score,
            strategy=candidate.strategy,
            message=f"Attached {len(attached)} document(s)",
            warnings=warnings,
        )

    def _copy_tax_data(self, transaction: Transaction, document: Document) -> None:
        """Copy net amount, tax amount and rate from the assigned document.

        With an early-payment discount the net amount is the discounted
        sub-total and the tax is what remains of the payment.
        """
        if document.sub_total is None:
            return

        if has_valid_skonto(document.skonto):
            net = net_amount_after_skonto(document.sub_total, document.skonto)
            tax = transaction.absolute_amount - net
        else:
            net = document.sub_total
            tax = document.tax_amount

        self.store.update_transaction_tax_data(transaction.id, net, tax, document.tax_rate)
        logger.debug(
            "Copied tax data from document %s to transaction %s (net %s, tax %s)",
            document.id,
            transaction.id,
            net,
            tax,
        )
