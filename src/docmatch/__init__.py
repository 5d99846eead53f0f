"""
Transactions → Candidate Documents → Ranked Matches → Attachments

Scores bank transactions against invoices and receipts on amount, date,
vendor and reference, finds multi-document combinations for split payments,
and auto-assigns the best candidates with a per-transaction audit trail.
"""

__version__ = "0.1.0"
