"""Test fixtures and utilities."""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from docmatch.config import Config, MatchingConfig
from docmatch.schemas.models import Document, Transaction
from docmatch.state_store import StateStore


def make_transaction(
    id: int = 1,
    amount: str = "-238.00",
    when: datetime = datetime(2024, 11, 18, 10, 30),
    counterparty: str | None = "Stadtwerke Graz",
    reference: str | None = None,
    note: str | None = None,
    sender_receiver: str | None = None,
) -> Transaction:
    """Transaction with sensible defaults; override what the test cares about."""
    return Transaction(
        id=id,
        gross_amount=Decimal(amount),
        transaction_date=when,
        counterparty=counterparty,
        sender_receiver=sender_receiver,
        note=note,
        reference=reference,
        is_outgoing=Decimal(amount) < 0,
    )


def make_document(
    id: int = 100,
    total: str | None = "238.00",
    invoice_date: date | None = date(2024, 11, 18),
    vendor_name: str | None = "Stadtwerke Graz",
    invoice_number: str | None = None,
    **kwargs,
) -> Document:
    """Document with sensible defaults; extra fields pass through."""
    return Document(
        id=id,
        name=kwargs.pop("name", f"Invoice {id}"),
        total=Decimal(total) if total is not None else None,
        invoice_date=invoice_date,
        vendor_name=vendor_name,
        invoice_number=invoice_number,
        **kwargs,
    )


@pytest.fixture
def matching_config() -> MatchingConfig:
    """Default scoring configuration."""
    return MatchingConfig()


@pytest.fixture
def config(temp_db) -> Config:
    """Default application configuration on a temporary database."""
    return Config(state_db_path=temp_db, max_workers=2)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def sample_transaction() -> Transaction:
    """Outgoing 238.00 payment to Stadtwerke Graz quoting an invoice number."""
    return make_transaction(reference="RE-2024-0815")


@pytest.fixture
def sample_document() -> Document:
    """Invoice that matches sample_transaction on every criterion."""
    return make_document(invoice_number="RE-2024-0815")
