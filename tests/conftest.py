"""Shared pytest fixtures for M-Pesa Reconcile tests.

Provides reusable fixtures for:
- Sample notification messages (sent, paid, received, withdrawn, junk) and
  an SMS dump combining them.
- A sample statement text with wrapped lines, a charge line, page markers,
  repeated headers, a failed line and the disclaimer footer.
- sample_entries: ledger history with phone numbers and categories.
- tmp_project_dir: a temporary directory created by ``config.initialize``.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from mpesa_reconcile.config import initialize
from mpesa_reconcile.models import LedgerEntry, RecurringSeries
from samples import BUY_MSG, JUNK_MSG, RECEIVE_MSG, SEND_MSG, STATEMENT_TEXT, WITHDRAW_MSG, ms

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sms_dump() -> str:
    """Four parseable messages and one junk message, blank-line separated."""
    return "\n\n".join([SEND_MSG, BUY_MSG, RECEIVE_MSG, WITHDRAW_MSG, JUNK_MSG]) + "\n"


@pytest.fixture
def statement_text() -> str:
    return STATEMENT_TEXT


@pytest.fixture
def sample_entries() -> list[LedgerEntry]:
    """Ledger history: three payments to Daniel, one masked number, one shop."""
    return [
        LedgerEntry(
            id="e1",
            amount=Decimal("5000.00"),
            payee="DANIEL KAMAU",
            category="Family",
            timestamp=ms(2025, 10, 4, 12, 0),
            phone_number="0712345678",
        ),
        LedgerEntry(
            id="e2",
            amount=Decimal("4500.00"),
            payee="DANIEL K",
            category="Family",
            timestamp=ms(2025, 11, 4, 12, 0),
            phone_number="254712345678",
        ),
        LedgerEntry(
            id="e3",
            amount=Decimal("300.00"),
            payee="DANIEL KAMAU",
            category="Uncategorized",
            timestamp=ms(2025, 9, 1, 8, 0),
            phone_number="0712345678",
        ),
        LedgerEntry(
            id="e4",
            amount=Decimal("1500.00"),
            payee="MAMA MBOGA",
            category="Food & Drinks",
            timestamp=ms(2025, 11, 20, 17, 0),
            phone_number="0733***999",
        ),
        LedgerEntry(
            id="e5",
            amount=Decimal("2400.00"),
            payee="NAIVAS",
            category="Groceries",
            timestamp=ms(2025, 11, 28, 18, 0),
            kind="buy",
        ),
    ]


@pytest.fixture
def rent_series() -> RecurringSeries:
    return RecurringSeries(
        id="rent",
        name="Rent",
        payee="LANDLORD",
        amount=Decimal("25000"),
        category="Housing",
        frequency="monthly",
        last_paid=ms(2025, 11, 1, 9, 0),
    )


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """A project directory with the default config and rules files."""
    project = tmp_path / "project"
    initialize(project)
    return project
