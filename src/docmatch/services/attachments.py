"""Attaching and detaching documents to transactions.

Every attach/detach is logged as an audit line. Amount problems and
documents already linked elsewhere produce warnings, never refusals; only
missing entities and duplicate links make an attach fail.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from ..matching.amount import best_document_amount
from ..schemas.models import AttachmentRecord, AttachResult, Document

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

# Attached total may differ from the payment by this much without a mismatch
AMOUNT_MISMATCH_TOLERANCE = Decimal("0.01")


@dataclass
class AttachmentResult:
    """Outcome of attaching or detaching one document."""

    transaction_id: int
    document_id: int
    status: AttachResult
    message: str | None = None
    warnings: list[str] = field(default_factory=list)
    record: AttachmentRecord | None = None

    @property
    def success(self) -> bool:
        return self.status in (AttachResult.CREATED, AttachResult.REMOVED)


@dataclass
class BulkAttachmentResult:
    """Outcome of attaching a set of documents to one transaction."""

    transaction_id: int
    attached: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.attached) and not self.failed


@dataclass
class AttachmentSummary:
    """Attached documents of a transaction and how their amounts compare."""

    transaction_id: int
    attached_document_count: int
    total_attached_amount: Decimal
    transaction_amount: Decimal
    # Positive when documents exceed the payment
    amount_difference: Decimal
    has_amount_mismatch: bool
    documents: list[Document] = field(default_factory=list)


class AttachmentService:
    """Creates and removes transaction/document links with validation."""

    def __init__(self, state_store: StateStore, config: MatchingConfig) -> None:
        self.store = state_store
        self.config = config

    def attach(
        self,
        transaction_id: int,
        document_id: int,
        is_automatic: bool = False,
        attached_by: str | None = None,
    ) -> AttachmentResult:
        """Link one document to a transaction."""
        result = AttachmentResult(transaction_id, document_id, AttachResult.NOT_FOUND)

        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning(
                "Attempted to attach document %s to non-existent transaction %s",
                document_id,
                transaction_id,
            )
            result.message = f"Transaction {transaction_id} not found"
            return result

        document = self.store.get_document(document_id)
        if document is None:
            logger.warning(
                "Attempted to attach non-existent document %s to transaction %s",
                document_id,
                transaction_id,
            )
            result.message = f"Document {document_id} not found"
            return result

        if self.store.get_attachment(transaction_id, document_id) is not None:
            result.status = AttachResult.DUPLICATE
            result.message = f"Document {document_id} is already attached to transaction {transaction_id}"
            logger.warning(result.message)
            return result

        others = [
            a.transaction_id
            for a in self.store.get_document_attachments(document_id)
            if a.transaction_id != transaction_id
        ]
        if others:
            result.warnings.append(
                f"Document {document_id} is also attached to transaction(s) "
                + ", ".join(str(t) for t in others)
            )

        overage = self._overage_warning(
            transaction_id, transaction.absolute_amount, [document]
        )
        if overage:
            result.warnings.append(overage)

        result.status = self.store.create_attachment(
            transaction_id, document_id, is_automatic=is_automatic, attached_by=attached_by
        )
        if result.status == AttachResult.DUPLICATE:
            # Lost a race against a concurrent writer
            result.message = f"Document {document_id} is already attached to transaction {transaction_id}"
            logger.warning(result.message)
            return result
        if result.status == AttachResult.NOT_FOUND:
            result.message = f"Transaction {transaction_id} or document {document_id} no longer exists"
            return result

        result.record = self.store.get_attachment(transaction_id, document_id)
        logger.info(
            "Document attachment created: document %s attached to transaction %s by %s (automatic: %s)",
            document_id,
            transaction_id,
            attached_by or "unknown",
            is_automatic,
        )
        return result

    def attach_documents(
        self,
        transaction_id: int,
        document_ids: Sequence[int],
        is_automatic: bool = False,
        attached_by: str | None = None,
        atomic: bool = False,
    ) -> BulkAttachmentResult:
        """Link several documents to one transaction.

        Non-atomic: each document is attempted on its own; failures become
        warnings and earlier successes stay. Atomic: all documents are written
        in one database transaction or none is.
        """
        if atomic:
            return self._attach_atomic(transaction_id, document_ids, is_automatic, attached_by)

        bulk = BulkAttachmentResult(transaction_id)
        for document_id in document_ids:
            result = self.attach(transaction_id, document_id, is_automatic, attached_by)
            bulk.warnings.extend(result.warnings)
            if result.success:
                bulk.attached.append(document_id)
            else:
                bulk.failed.append(document_id)
                bulk.warnings.append(f"Failed to attach document {document_id}: {result.message}")
        return bulk

    def _attach_atomic(
        self,
        transaction_id: int,
        document_ids: Sequence[int],
        is_automatic: bool,
        attached_by: str | None,
    ) -> BulkAttachmentResult:
        bulk = BulkAttachmentResult(transaction_id)
        status, failed_id = self.store.create_attachments_atomic(
            transaction_id, document_ids, is_automatic=is_automatic, attached_by=attached_by
        )
        if status != AttachResult.CREATED:
            bulk.failed = list(document_ids)
            reason = "is already attached" if status == AttachResult.DUPLICATE else "was not found"
            bulk.warnings.append(
                f"No documents attached to transaction {transaction_id}: "
                f"document {failed_id} {reason}"
            )
            logger.warning(bulk.warnings[-1])
            return bulk

        bulk.attached = list(document_ids)
        for document_id in document_ids:
            logger.info(
                "Document attachment created: document %s attached to transaction %s by %s (automatic: %s)",
                document_id,
                transaction_id,
                attached_by or "unknown",
                is_automatic,
            )
        return bulk

    def detach(self, transaction_id: int, document_id: int) -> AttachmentResult:
        """Remove the link between a document and a transaction."""
        removed = self.store.remove_attachment(transaction_id, document_id)
        if removed is None:
            logger.warning(
                "Attempted to detach non-existent attachment: document %s from transaction %s",
                document_id,
                transaction_id,
            )
            return AttachmentResult(
                transaction_id,
                document_id,
                AttachResult.NOT_FOUND,
                message=f"Document {document_id} is not attached to transaction {transaction_id}",
            )

        logger.info(
            "Document attachment removed: document %s detached from transaction %s "
            "(was attached by %s on %s)",
            document_id,
            transaction_id,
            removed.attached_by or "unknown",
            removed.attached_at,
        )
        return AttachmentResult(transaction_id, document_id, AttachResult.REMOVED, record=removed)

    def get_summary(self, transaction_id: int) -> AttachmentSummary | None:
        """Attached documents and amount comparison; None for unknown transactions."""
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning("Attempted to summarize non-existent transaction %s", transaction_id)
            return None

        documents = self.store.get_attached_documents(transaction_id)
        total = sum(
            (best_document_amount(d) or Decimal("0") for d in documents), Decimal("0")
        )
        difference = total - transaction.absolute_amount
        return AttachmentSummary(
            transaction_id=transaction_id,
            attached_document_count=len(documents),
            total_attached_amount=total,
            transaction_amount=transaction.absolute_amount,
            amount_difference=difference,
            has_amount_mismatch=abs(difference) > AMOUNT_MISMATCH_TOLERANCE,
            documents=documents,
        )

    def _overage_warning(
        self,
        transaction_id: int,
        transaction_amount: Decimal,
        new_documents: Sequence[Document],
    ) -> str | None:
        """Warning when attached plus new documents exceed the payment beyond tolerance."""
        attached = self.store.get_attached_documents(transaction_id)
        total = Decimal("0")
        for document in [*attached, *new_documents]:
            amount = best_document_amount(document)
            if amount is not None:
                total += amount

        limit = transaction_amount * (1 + Decimal(str(self.config.validation.overage_threshold)))
        if transaction_amount and total > limit:
            message = (
                f"Total attached amount {total:.2f} exceeds transaction amount "
                f"{transaction_amount:.2f} by {total - transaction_amount:.2f}"
            )
            logger.warning("Amount overage for transaction %s: %s", transaction_id, message)
            return message
        return None
