"""
Canonical data model for transaction/document matching.

Transactions and Documents are frozen snapshots: scoring never mutates them,
so a pool can be shared between worker threads. Monetary values are Decimal,
scores are floats in [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class MatchStrategy(str, Enum):
    """How a multi-document combination was found."""

    REFERENCE = "reference"
    AMOUNT = "amount"
    HYBRID = "hybrid"


class ConfidenceLevel(str, Enum):
    """Confidence tier of a combination."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AttachResult(str, Enum):
    """Outcome of a single attachment write."""

    CREATED = "CREATED"
    DUPLICATE = "DUPLICATE"
    NOT_FOUND = "NOT_FOUND"
    REMOVED = "REMOVED"  # detach succeeded


class AssignmentStatus(str, Enum):
    """Terminal state of one transaction in auto-assignment."""

    ASSIGNED = "ASSIGNED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _str(value: Decimal | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(value)
    return value.isoformat()


@dataclass(frozen=True)
class Transaction:
    """A bank transaction awaiting supporting documents.

    gross_amount is signed (negative for outgoing payments); scorers only
    look at its absolute value.
    """

    id: int
    gross_amount: Decimal
    transaction_date: datetime
    counterparty: str | None = None
    sender_receiver: str | None = None
    note: str | None = None
    reference: str | None = None
    is_outgoing: bool = True
    net_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_rate: Decimal | None = None

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.gross_amount)

    @property
    def vendor_fields(self) -> list[str]:
        """Non-empty vendor-identifying strings."""
        return [v for v in (self.counterparty, self.sender_receiver) if v and v.strip()]

    @property
    def reference_texts(self) -> list[str]:
        """Non-empty texts that may carry invoice references."""
        return [v for v in (self.reference, self.note) if v and v.strip()]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "gross_amount": str(self.gross_amount),
            "transaction_date": self.transaction_date.isoformat(),
            "counterparty": self.counterparty,
            "sender_receiver": self.sender_receiver,
            "note": self.note,
            "reference": self.reference,
            "is_outgoing": self.is_outgoing,
            "net_amount": _str(self.net_amount),
            "tax_amount": _str(self.tax_amount),
            "tax_rate": _str(self.tax_rate),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Transaction:
        """Deserialize from dictionary."""
        return cls(
            id=int(data["id"]),
            gross_amount=Decimal(str(data["gross_amount"])),
            transaction_date=_datetime(data["transaction_date"]),
            counterparty=data.get("counterparty"),
            sender_receiver=data.get("sender_receiver"),
            note=data.get("note"),
            reference=data.get("reference"),
            is_outgoing=bool(data.get("is_outgoing", True)),
            net_amount=_decimal(data.get("net_amount")),
            tax_amount=_decimal(data.get("tax_amount")),
            tax_rate=_decimal(data.get("tax_rate")),
        )


@dataclass(frozen=True)
class Document:
    """An invoice or receipt that may support one or more transactions."""

    id: int
    name: str | None = None
    total: Decimal | None = None
    sub_total: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_rate: Decimal | None = None
    # Early-payment discount (percent)
    skonto: Decimal | None = None
    invoice_date: date | None = None
    invoice_date_from_folder: date | None = None
    vendor_name: str | None = None
    invoice_number: str | None = None
    # True when not attached to any transaction
    unconnected: bool = True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "total": _str(self.total),
            "sub_total": _str(self.sub_total),
            "tax_amount": _str(self.tax_amount),
            "tax_rate": _str(self.tax_rate),
            "skonto": _str(self.skonto),
            "invoice_date": _str(self.invoice_date),
            "invoice_date_from_folder": _str(self.invoice_date_from_folder),
            "vendor_name": self.vendor_name,
            "invoice_number": self.invoice_number,
            "unconnected": self.unconnected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Document:
        """Deserialize from dictionary."""
        return cls(
            id=int(data["id"]),
            name=data.get("name"),
            total=_decimal(data.get("total")),
            sub_total=_decimal(data.get("sub_total")),
            tax_amount=_decimal(data.get("tax_amount")),
            tax_rate=_decimal(data.get("tax_rate")),
            skonto=_decimal(data.get("skonto")),
            invoice_date=_date(data.get("invoice_date")),
            invoice_date_from_folder=_date(data.get("invoice_date_from_folder")),
            vendor_name=data.get("vendor_name"),
            invoice_number=data.get("invoice_number"),
            unconnected=bool(data.get("unconnected", True)),
        )


@dataclass
class MatchScoreBreakdown:
    """Per-criterion scores and how they combined."""

    amount_score: float
    date_score: float
    vendor_score: float
    reference_score: float
    # Weighted sum before bonus and clamp
    weighted_score: float
    composite_score: float
    bonus_applied: bool = False

    @property
    def criterion_scores(self) -> tuple[float, float, float, float]:
        return (self.amount_score, self.date_score, self.vendor_score, self.reference_score)

    def to_dict(self) -> dict:
        return {
            "amount_score": self.amount_score,
            "date_score": self.date_score,
            "vendor_score": self.vendor_score,
            "reference_score": self.reference_score,
            "weighted_score": self.weighted_score,
            "composite_score": self.composite_score,
            "bonus_applied": self.bonus_applied,
        }


@dataclass
class DocumentMatch:
    """A single candidate document for a transaction."""

    document: Document
    match_score: float
    breakdown: MatchScoreBreakdown

    @property
    def document_id(self) -> int:
        return self.document.id

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "document_id": self.document.id,
            "document_name": self.document.name,
            "match_score": self.match_score,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass
class CombinationBreakdown:
    """Scores of a multi-document combination."""

    amount_score: float
    date_score: float
    vendor_score: float
    reference_score: float
    composite_score: float
    # Documents whose own amount equals the transaction amount
    exact_amount_matches: int = 0
    # Reference tokens (or strong individual references) matched
    reference_matches: int = 0
    multiple_reference_bonus: float = 0.0

    def to_dict(self) -> dict:
        return {
            "amount_score": self.amount_score,
            "date_score": self.date_score,
            "vendor_score": self.vendor_score,
            "reference_score": self.reference_score,
            "composite_score": self.composite_score,
            "exact_amount_matches": self.exact_amount_matches,
            "reference_matches": self.reference_matches,
            "multiple_reference_bonus": self.multiple_reference_bonus,
        }


@dataclass
class MultipleDocumentMatch:
    """A set of documents that jointly explain one transaction."""

    documents: tuple[Document, ...]
    match_score: float
    total_amount: Decimal
    breakdown: CombinationBreakdown
    strategy: MatchStrategy
    confidence_level: ConfidenceLevel
    warnings: list[str] = field(default_factory=list)

    @property
    def document_count(self) -> int:
        return len(self.documents)

    @property
    def document_ids(self) -> tuple[int, ...]:
        return tuple(d.id for d in self.documents)

    @property
    def key(self) -> tuple[int, ...]:
        """Order-independent identity of the document set."""
        return tuple(sorted(self.document_ids))

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "document_ids": list(self.document_ids),
            "document_count": self.document_count,
            "match_score": self.match_score,
            "total_amount": str(self.total_amount),
            "strategy": self.strategy.value,
            "confidence_level": self.confidence_level.value,
            "breakdown": self.breakdown.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass
class AttachmentRecord:
    """Persisted link between a transaction and a document (audit trail)."""

    id: int
    transaction_id: int
    document_id: int
    attached_at: str  # ISO timestamp (UTC)
    is_automatic: bool
    attached_by: str | None = None


@dataclass
class AmountValidationResult:
    """Comparison of a document set's combined amount with a transaction."""

    transaction_amount: Decimal
    total_document_amount: Decimal = Decimal("0")
    amount_difference: Decimal = Decimal("0")
    # Relative to the transaction amount (0.10 = 10%)
    percentage_difference: float = 0.0
    valid_document_count: int = 0
    skonto_applied_count: int = 0
    has_significant_overage: bool = False
    has_significant_underage: bool = False
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return (
            self.valid_document_count > 0
            and not self.has_significant_overage
            and not self.has_significant_underage
        )


@dataclass
class AssignmentOutcome:
    """What auto-assignment did for one transaction."""

    transaction_id: int
    status: AssignmentStatus
    document_ids: list[int] = field(default_factory=list)
    total_amount: Decimal | None = None
    score: float = 0.0
    # "single" or a MatchStrategy value
    strategy: str | None = None
    message: str | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "status": self.status.value,
            "document_ids": list(self.document_ids),
            "total_amount": _str(self.total_amount),
            "score": self.score,
            "strategy": self.strategy,
            "message": self.message,
            "warnings": list(self.warnings),
            "error": self.error,
        }


@dataclass
class AutoAssignResult:
    """Summary of an auto-assignment run. Built incrementally, never raises."""

    total_processed: int = 0
    assigned_count: int = 0
    skipped_count: int = 0
    documents_attached: int = 0
    errors: list[str] = field(default_factory=list)
    outcomes: list[AssignmentOutcome] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == AssignmentStatus.FAILED)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def warnings(self) -> list[str]:
        return [w for o in self.outcomes for w in o.warnings]

    def record(self, outcome: AssignmentOutcome) -> None:
        """Fold one transaction's outcome into the counts."""
        self.outcomes.append(outcome)
        self.total_processed += 1
        if outcome.status == AssignmentStatus.ASSIGNED:
            self.assigned_count += 1
            self.documents_attached += len(outcome.document_ids)
        elif outcome.status == AssignmentStatus.SKIPPED:
            self.skipped_count += 1
        elif outcome.error:
            self.errors.append(outcome.error)

    def to_dict(self) -> dict:
        return {
            "total_processed": self.total_processed,
            "assigned_count": self.assigned_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "documents_attached": self.documents_attached,
            "errors": list(self.errors),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
