"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Transactions awaiting documents
- Documents (invoices, receipts)
- Document attachments (the audit trail of assignments)

Enforces uniqueness of (transaction_id, document_id) attachments.
"""

from .sqlite_store import StateStore

__all__ = [
    "StateStore",
]
