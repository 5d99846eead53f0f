"""
SQLite-based state store implementation.

Tables:
- transactions: Bank transactions (amounts stored as decimal strings)
- documents: Invoices and receipts
- document_attachments: Transaction/document links (migration 001)

A document is "unconnected" when no attachment references it; the flag is
derived in SQL, never stored.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..schemas.models import AttachmentRecord, AttachResult, Document, Transaction

logger = logging.getLogger(__name__)

_DOCUMENT_SELECT = """
    SELECT d.*,
           NOT EXISTS (
               SELECT 1 FROM document_attachments a WHERE a.document_id = d.id
           ) AS unconnected
    FROM documents d
"""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(value)
    return value.isoformat()


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    keys = row.keys()
    return Transaction(
        id=row["id"],
        gross_amount=Decimal(row["gross_amount"]),
        transaction_date=datetime.fromisoformat(row["transaction_date"]),
        counterparty=row["counterparty"],
        sender_receiver=row["sender_receiver"],
        note=row["note"],
        reference=row["reference"],
        is_outgoing=bool(row["is_outgoing"]),
        net_amount=_dec(row["net_amount"]) if "net_amount" in keys else None,
        tax_amount=_dec(row["tax_amount"]) if "tax_amount" in keys else None,
        tax_rate=_dec(row["tax_rate"]) if "tax_rate" in keys else None,
    )


def _document_from_row(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        name=row["name"],
        total=_dec(row["total"]),
        sub_total=_dec(row["sub_total"]),
        tax_amount=_dec(row["tax_amount"]),
        tax_rate=_dec(row["tax_rate"]),
        skonto=_dec(row["skonto"]),
        invoice_date=datetime.fromisoformat(row["invoice_date"]).date() if row["invoice_date"] else None,
        invoice_date_from_folder=(
            datetime.fromisoformat(row["invoice_date_from_folder"]).date()
            if row["invoice_date_from_folder"]
            else None
        ),
        vendor_name=row["vendor_name"],
        invoice_number=row["invoice_number"],
        unconnected=bool(row["unconnected"]),
    )


def _attachment_from_row(row: sqlite3.Row) -> AttachmentRecord:
    return AttachmentRecord(
        id=row["id"],
        transaction_id=row["transaction_id"],
        document_id=row["document_id"],
        attached_at=row["attached_at"],
        is_automatic=bool(row["is_automatic"]),
        attached_by=row["attached_by"],
    )


class StateStore:
    """
    SQLite-based persistence for transactions, documents and attachments.

    Opens one connection per operation, so a store instance may be shared
    between threads. Attachment uniqueness is enforced by the database.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the base tables."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY,
                    gross_amount TEXT NOT NULL,  -- signed decimal string
                    transaction_date TEXT NOT NULL,  -- ISO datetime
                    counterparty TEXT,
                    sender_receiver TEXT,
                    note TEXT,
                    reference TEXT,
                    is_outgoing BOOLEAN NOT NULL DEFAULT TRUE,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    name TEXT,
                    total TEXT,
                    sub_total TEXT,
                    tax_amount TEXT,
                    tax_rate TEXT,
                    skonto TEXT,  -- percent
                    invoice_date TEXT,  -- ISO date
                    invoice_date_from_folder TEXT,
                    vendor_name TEXT,
                    invoice_number TEXT,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # === Transactions ===

    def upsert_transaction(self, transaction: Transaction) -> None:
        """Insert or replace a transaction snapshot."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO transactions
                (id, gross_amount, transaction_date, counterparty, sender_receiver, note,
                 reference, is_outgoing, net_amount, tax_amount, tax_rate, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    gross_amount = excluded.gross_amount,
                    transaction_date = excluded.transaction_date,
                    counterparty = excluded.counterparty,
                    sender_receiver = excluded.sender_receiver,
                    note = excluded.note,
                    reference = excluded.reference,
                    is_outgoing = excluded.is_outgoing,
                    net_amount = excluded.net_amount,
                    tax_amount = excluded.tax_amount,
                    tax_rate = excluded.tax_rate,
                    updated_at = excluded.updated_at
            """,
                (
                    transaction.id,
                    str(transaction.gross_amount),
                    transaction.transaction_date.isoformat(),
                    transaction.counterparty,
                    transaction.sender_receiver,
                    transaction.note,
                    transaction.reference,
                    transaction.is_outgoing,
                    _text(transaction.net_amount),
                    _text(transaction.tax_amount),
                    _text(transaction.tax_rate),
                    _utc_now(),
                ),
            )

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return _transaction_from_row(row) if row else None

    def list_transactions(
        self,
        transaction_ids: Iterable[int] | None = None,
        unattached_only: bool = False,
    ) -> list[Transaction]:
        """List transactions ordered by id.

        Args:
            transaction_ids: Restrict to these ids (unknown ids are ignored).
            unattached_only: Only transactions without any attachment.
        """
        query = "SELECT * FROM transactions t"
        clauses = []
        params: list[Any] = []

        if transaction_ids is not None:
            ids = list(transaction_ids)
            if not ids:
                return []
            clauses.append(f"t.id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if unattached_only:
            clauses.append(
                "NOT EXISTS (SELECT 1 FROM document_attachments a WHERE a.transaction_id = t.id)"
            )

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY t.id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_transaction_from_row(row) for row in rows]

    def update_transaction_tax_data(
        self,
        transaction_id: int,
        net_amount: Decimal | None,
        tax_amount: Decimal | None,
        tax_rate: Decimal | None,
    ) -> bool:
        """Store tax figures derived from an assigned document."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET net_amount = ?, tax_amount = ?, tax_rate = ?, updated_at = ?
                WHERE id = ?
            """,
                (_text(net_amount), _text(tax_amount), _text(tax_rate), _utc_now(), transaction_id),
            )
            return cursor.rowcount > 0

    # === Documents ===

    def upsert_document(self, document: Document) -> None:
        """Insert or replace a document snapshot (the unconnected flag is derived)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents
                (id, name, total, sub_total, tax_amount, tax_rate, skonto, invoice_date,
                 invoice_date_from_folder, vendor_name, invoice_number, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    total = excluded.total,
                    sub_total = excluded.sub_total,
                    tax_amount = excluded.tax_amount,
                    tax_rate = excluded.tax_rate,
                    skonto = excluded.skonto,
                    invoice_date = excluded.invoice_date,
                    invoice_date_from_folder = excluded.invoice_date_from_folder,
                    vendor_name = excluded.vendor_name,
                    invoice_number = excluded.invoice_number,
                    updated_at = excluded.updated_at
            """,
                (
                    document.id,
                    document.name,
                    _text(document.total),
                    _text(document.sub_total),
                    _text(document.tax_amount),
                    _text(document.tax_rate),
                    _text(document.skonto),
                    _text(document.invoice_date),
                    _text(document.invoice_date_from_folder),
                    document.vendor_name,
                    document.invoice_number,
                    _utc_now(),
                ),
            )

    def get_document(self, document_id: int) -> Document | None:
        with self._transaction() as conn:
            row = conn.execute(_DOCUMENT_SELECT + " WHERE d.id = ?", (document_id,)).fetchone()
            return _document_from_row(row) if row else None

    def list_documents(self, unconnected_only: bool = False) -> list[Document]:
        """Snapshot of the document pool ordered by id."""
        query = _DOCUMENT_SELECT
        if unconnected_only:
            query += " WHERE NOT EXISTS (SELECT 1 FROM document_attachments a WHERE a.document_id = d.id)"
        query += " ORDER BY d.id"

        with self._transaction() as conn:
            return [_document_from_row(row) for row in conn.execute(query).fetchall()]

    # === Attachments ===

    def create_attachment(
        self,
        transaction_id: int,
        document_id: int,
        is_automatic: bool = False,
        attached_by: str | None = None,
    ) -> AttachResult:
        """Link a document to a transaction.

        Returns NOT_FOUND if either side is missing and DUPLICATE if the pair
        is already linked (including when a concurrent writer won the race).
        """
        with self._transaction() as conn:
            return self._insert_attachment(conn, transaction_id, document_id, is_automatic, attached_by)

    def create_attachments_atomic(
        self,
        transaction_id: int,
        document_ids: Iterable[int],
        is_automatic: bool = False,
        attached_by: str | None = None,
    ) -> tuple[AttachResult, int | None]:
        """Link several documents in one database transaction, all or nothing.

        Returns (CREATED, None) on success, otherwise the first failure and
        the document id that caused it; nothing is written in that case.
        """
        conn = self._get_connection()
        try:
            for document_id in document_ids:
                result = self._insert_attachment(
                    conn, transaction_id, document_id, is_automatic, attached_by
                )
                if result != AttachResult.CREATED:
                    conn.rollback()
                    return result, document_id
            conn.commit()
            return AttachResult.CREATED, None
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _insert_attachment(
        self,
        conn: sqlite3.Connection,
        transaction_id: int,
        document_id: int,
        is_automatic: bool,
        attached_by: str | None,
    ) -> AttachResult:
        if not conn.execute("SELECT 1 FROM transactions WHERE id = ?", (transaction_id,)).fetchone():
            return AttachResult.NOT_FOUND
        if not conn.execute("SELECT 1 FROM documents WHERE id = ?", (document_id,)).fetchone():
            return AttachResult.NOT_FOUND

        try:
            conn.execute(
                """
                INSERT INTO document_attachments
                (transaction_id, document_id, attached_at, attached_by, is_automatic)
                VALUES (?, ?, ?, ?, ?)
            """,
                (transaction_id, document_id, _utc_now(), attached_by, is_automatic),
            )
        except sqlite3.IntegrityError:
            return AttachResult.DUPLICATE
        return AttachResult.CREATED

    def remove_attachment(self, transaction_id: int, document_id: int) -> AttachmentRecord | None:
        """Delete a link; returns the removed record, or None if there was none."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM document_attachments WHERE transaction_id = ? AND document_id = ?",
                (transaction_id, document_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM document_attachments WHERE id = ?", (row["id"],))
            return _attachment_from_row(row)

    def get_attachment(self, transaction_id: int, document_id: int) -> AttachmentRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM document_attachments WHERE transaction_id = ? AND document_id = ?",
                (transaction_id, document_id),
            ).fetchone()
            return _attachment_from_row(row) if row else None

    def get_attachments(self, transaction_id: int) -> list[AttachmentRecord]:
        """Attachments of a transaction, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM document_attachments WHERE transaction_id = ? ORDER BY attached_at, id",
                (transaction_id,),
            ).fetchall()
            return [_attachment_from_row(row) for row in rows]

    def get_document_attachments(self, document_id: int) -> list[AttachmentRecord]:
        """Attachments that reference a document, across all transactions."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM document_attachments WHERE document_id = ? ORDER BY id",
                (document_id,),
            ).fetchall()
            return [_attachment_from_row(row) for row in rows]

    def count_attachments(self, transaction_id: int) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM document_attachments WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchone()
            return row["count"] if row else 0

    def get_attached_documents(self, transaction_id: int) -> list[Document]:
        """Documents linked to a transaction."""
        with self._transaction() as conn:
            rows = conn.execute(
                _DOCUMENT_SELECT
                + """
                JOIN document_attachments att ON att.document_id = d.id
                WHERE att.transaction_id = ?
                ORDER BY att.id
            """,
                (transaction_id,),
            ).fetchall()
            return [_document_from_row(row) for row in rows]

    # === Stats ===

    def get_stats(self) -> dict[str, Any]:
        """Get matching statistics."""
        with self._transaction() as conn:
            transactions = conn.execute("SELECT COUNT(*) AS count FROM transactions").fetchone()
            unattached = conn.execute(
                """
                SELECT COUNT(*) AS count FROM transactions t
                WHERE NOT EXISTS (SELECT 1 FROM document_attachments a WHERE a.transaction_id = t.id)
            """
            ).fetchone()
            documents = conn.execute("SELECT COUNT(*) AS count FROM documents").fetchone()
            unconnected = conn.execute(
                """
                SELECT COUNT(*) AS count FROM documents d
                WHERE NOT EXISTS (SELECT 1 FROM document_attachments a WHERE a.document_id = d.id)
            """
            ).fetchone()
            attachments = conn.execute(
                "SELECT COUNT(*) AS count FROM document_attachments"
            ).fetchone()
            automatic = conn.execute(
                "SELECT COUNT(*) AS count FROM document_attachments WHERE is_automatic"
            ).fetchone()

            return {
                "transactions_total": transactions["count"] if transactions else 0,
                "transactions_unattached": unattached["count"] if unattached else 0,
                "documents_total": documents["count"] if documents else 0,
                "documents_unconnected": unconnected["count"] if unconnected else 0,
                "attachments_total": attachments["count"] if attachments else 0,
                "attachments_automatic": automatic["count"] if automatic else 0,
            }
