"""
Migration 002: Add tax columns to the transactions table.

Auto-assignment of a single document copies net amount, tax amount and tax
rate from the document onto the transaction.
"""

import sqlite3

VERSION = 2
NAME = "transaction_tax_data"

TAX_COLUMNS = ("net_amount", "tax_amount", "tax_rate")


def upgrade(conn: sqlite3.Connection) -> None:
    """Add tax columns to transactions."""
    cursor = conn.execute("PRAGMA table_info(transactions)")
    columns = [row[1] for row in cursor.fetchall()]

    for column in TAX_COLUMNS:
        if column not in columns:
            conn.execute(f"ALTER TABLE transactions ADD COLUMN {column} TEXT")


def downgrade(conn: sqlite3.Connection) -> None:
    """
    Remove the tax columns.

    Note: SQLite doesn't support DROP COLUMN before 3.35.0.
    This creates a new table without the columns.
    """
    version = sqlite3.sqlite_version_info
    if version >= (3, 35, 0):
        for column in TAX_COLUMNS:
            conn.execute(f"ALTER TABLE transactions DROP COLUMN {column}")
    else:
        conn.execute(
            """
            CREATE TABLE transactions_new (
                id INTEGER PRIMARY KEY,
                gross_amount TEXT NOT NULL,
                transaction_date TEXT NOT NULL,
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
            INSERT INTO transactions_new
            SELECT id, gross_amount, transaction_date, counterparty, sender_receiver,
                   note, reference, is_outgoing, updated_at
            FROM transactions
        """
        )
        conn.execute("DROP TABLE transactions")
        conn.execute("ALTER TABLE transactions_new RENAME TO transactions")
