"""
Migration 001: Create the document_attachments table.

One row per (transaction, document) link. The UNIQUE constraint is what
serializes concurrent attach attempts: exactly one insert wins, the others
fail with an IntegrityError and are reported as duplicates.
"""

import sqlite3

VERSION = 1
NAME = "document_attachments"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the document_attachments table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS document_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id INTEGER NOT NULL,
            document_id INTEGER NOT NULL,
            attached_at TEXT NOT NULL,
            attached_by TEXT,  -- actor, e.g. 'auto-assign' or a user name
            is_automatic BOOLEAN NOT NULL DEFAULT FALSE,

            FOREIGN KEY (transaction_id) REFERENCES transactions(id) ON DELETE CASCADE,
            FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE,

            UNIQUE(transaction_id, document_id)
        )
        """
    )

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_attachments_transaction_id ON document_attachments(transaction_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_attachments_document_id ON document_attachments(document_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove the document_attachments table."""
    conn.execute("DROP INDEX IF EXISTS idx_attachments_document_id")
    conn.execute("DROP INDEX IF EXISTS idx_attachments_transaction_id")
    conn.execute("DROP TABLE IF EXISTS document_attachments")
