"""Tests for state store."""

import sqlite3
import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import make_document, make_transaction
from docmatch.schemas.models import AttachResult
from docmatch.state_store import StateStore
from docmatch.state_store.migrations import MigrationRunner, get_all_migrations


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "transactions" in table_names
            assert "documents" in table_names
            assert "document_attachments" in table_names
            assert "migrations" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        StateStore(temp_db).upsert_transaction(make_transaction(1))
        store = StateStore(temp_db)
        assert store.get_transaction(1) is not None


class TestMigrations:
    """Schema versioning."""

    def test_all_migrations_discovered(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:2] == [1, 2]

    def test_all_applied_on_init(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.get_pending() == []
            assert runner.get_current_version() == max(m.version for m in get_all_migrations())
        finally:
            conn.close()

    def test_rollback_and_reapply_tax_columns(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.migrate_to(1)
            columns = [r[1] for r in conn.execute("PRAGMA table_info(transactions)").fetchall()]
            assert "net_amount" not in columns

            runner.migrate_to(2)
            columns = [r[1] for r in conn.execute("PRAGMA table_info(transactions)").fetchall()]
            assert "net_amount" in columns
        finally:
            conn.close()


class TestTransactionOperations:
    """Transaction CRUD."""

    def test_upsert_and_get(self, store):
        store.upsert_transaction(make_transaction(1, note="Strom November", reference="RE-1"))

        txn = store.get_transaction(1)

        assert txn.gross_amount == Decimal("-238.00")
        assert txn.transaction_date == datetime(2024, 11, 18, 10, 30)
        assert txn.counterparty == "Stadtwerke Graz"
        assert txn.note == "Strom November"
        assert txn.reference == "RE-1"
        assert txn.is_outgoing is True

    def test_upsert_updates(self, store):
        store.upsert_transaction(make_transaction(1, counterparty="Old"))
        store.upsert_transaction(make_transaction(1, counterparty="New"))
        assert store.get_transaction(1).counterparty == "New"

    def test_get_missing(self, store):
        assert store.get_transaction(42) is None

    def test_list_by_ids(self, store):
        for i in (3, 1, 2):
            store.upsert_transaction(make_transaction(i))
        assert [t.id for t in store.list_transactions([3, 1, 99])] == [1, 3]
        assert store.list_transactions([]) == []

    def test_list_unattached(self, store):
        store.upsert_transaction(make_transaction(1))
        store.upsert_transaction(make_transaction(2))
        store.upsert_document(make_document(10))
        store.create_attachment(1, 10)

        assert [t.id for t in store.list_transactions(unattached_only=True)] == [2]

    def test_update_tax_data(self, store):
        store.upsert_transaction(make_transaction(1))

        assert store.update_transaction_tax_data(1, Decimal("200.00"), Decimal("38.00"), Decimal("19"))
        txn = store.get_transaction(1)
        assert txn.net_amount == Decimal("200.00")
        assert txn.tax_amount == Decimal("38.00")
        assert txn.tax_rate == Decimal("19")

    def test_update_tax_data_missing_transaction(self, store):
        assert store.update_transaction_tax_data(5, None, None, None) is False


class TestDocumentOperations:
    """Document CRUD and the derived unconnected flag."""

    def test_upsert_and_get(self, store):
        store.upsert_document(
            make_document(
                10,
                total="119.00",
                sub_total=Decimal("100.00"),
                tax_amount=Decimal("19.00"),
                tax_rate=Decimal("19"),
                skonto=Decimal("2"),
                invoice_date_from_folder=date(2024, 11, 1),
                invoice_number="RE-77",
            )
        )

        doc = store.get_document(10)

        assert doc.total == Decimal("119.00")
        assert doc.sub_total == Decimal("100.00")
        assert doc.skonto == Decimal("2")
        assert doc.invoice_date == date(2024, 11, 18)
        assert doc.invoice_date_from_folder == date(2024, 11, 1)
        assert doc.invoice_number == "RE-77"
        assert doc.unconnected is True

    def test_unconnected_flag_derived(self, store):
        store.upsert_transaction(make_transaction(1))
        store.upsert_document(make_document(10))
        store.upsert_document(make_document(11))
        store.create_attachment(1, 10)

        assert store.get_document(10).unconnected is False
        assert [d.id for d in store.list_documents(unconnected_only=True)] == [11]
        assert [d.id for d in store.list_documents()] == [10, 11]


class TestAttachments:
    """Attachment writes and uniqueness."""

    @pytest.fixture
    def seeded(self, store):
        store.upsert_transaction(make_transaction(1))
        store.upsert_transaction(make_transaction(2))
        for i in (10, 11, 12):
            store.upsert_document(make_document(i))
        return store

    def test_create(self, seeded):
        assert seeded.create_attachment(1, 10, is_automatic=True, attached_by="auto-assign") == AttachResult.CREATED

        record = seeded.get_attachment(1, 10)
        assert record.is_automatic is True
        assert record.attached_by == "auto-assign"
        assert record.attached_at.endswith("Z")
        assert seeded.count_attachments(1) == 1

    def test_duplicate(self, seeded):
        seeded.create_attachment(1, 10)
        assert seeded.create_attachment(1, 10) == AttachResult.DUPLICATE
        assert seeded.count_attachments(1) == 1

    def test_not_found(self, seeded):
        assert seeded.create_attachment(99, 10) == AttachResult.NOT_FOUND
        assert seeded.create_attachment(1, 99) == AttachResult.NOT_FOUND

    def test_same_document_on_two_transactions(self, seeded):
        assert seeded.create_attachment(1, 10) == AttachResult.CREATED
        assert seeded.create_attachment(2, 10) == AttachResult.CREATED
        assert [a.transaction_id for a in seeded.get_document_attachments(10)] == [1, 2]

    def test_atomic_all_or_nothing(self, seeded):
        seeded.create_attachment(1, 12)

        status, failed = seeded.create_attachments_atomic(1, [10, 11, 12])

        assert status == AttachResult.DUPLICATE
        assert failed == 12
        assert seeded.count_attachments(1) == 1

    def test_atomic_success(self, seeded):
        assert seeded.create_attachments_atomic(2, [10, 11]) == (AttachResult.CREATED, None)
        assert [d.id for d in seeded.get_attached_documents(2)] == [10, 11]

    def test_remove(self, seeded):
        seeded.create_attachment(1, 10, attached_by="alice")

        removed = seeded.remove_attachment(1, 10)

        assert removed.attached_by == "alice"
        assert seeded.get_attachment(1, 10) is None
        assert seeded.remove_attachment(1, 10) is None

    def test_unique_constraint_in_schema(self, seeded):
        seeded.create_attachment(1, 10)
        conn = seeded._get_connection()
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO document_attachments (transaction_id, document_id, attached_at, is_automatic)"
                    " VALUES (1, 10, 'now', 0)"
                )
        finally:
            conn.close()

    def test_concurrent_attach_has_one_winner(self, seeded):
        results = []
        barrier = threading.Barrier(4)

        def attach():
            barrier.wait()
            results.append(seeded.create_attachment(1, 11))

        threads = [threading.Thread(target=attach) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(AttachResult.CREATED) == 1
        assert results.count(AttachResult.DUPLICATE) == 3
        assert seeded.count_attachments(1) == 1

    def test_get_attachments_ordered(self, seeded):
        seeded.create_attachment(1, 12)
        seeded.create_attachment(1, 10)
        assert [a.document_id for a in seeded.get_attachments(1)] == [12, 10]


class TestStats:
    """Status counters."""

    def test_stats(self, store):
        store.upsert_transaction(make_transaction(1))
        store.upsert_transaction(make_transaction(2))
        store.upsert_document(make_document(10))
        store.upsert_document(make_document(11))
        store.create_attachment(1, 10, is_automatic=True)

        stats = store.get_stats()

        assert stats == {
            "transactions_total": 2,
            "transactions_unattached": 1,
            "documents_total": 2,
            "documents_unconnected": 1,
            "attachments_total": 1,
            "attachments_automatic": 1,
        }
