"""Tests for duplicate detection against the ledger."""

from __future__ import annotations

from decimal import Decimal

from mpesa_reconcile.duplicates import detect_duplicates
from mpesa_reconcile.models import LedgerEntry, TransactionCandidate
from samples import ms

DAY = 24 * 60 * 60 * 1000
WHEN = ms(2025, 12, 4, 12, 25)


def _make_candidate(
    *,
    amount: str = "6800.00",
    counterparty: str | None = "DANIEL 0712345678",
    timestamp: int = WHEN,
    receipt_code: str | None = None,
    degraded: bool = False,
) -> TransactionCandidate:
    return TransactionCandidate(
        amount=Decimal(amount),
        kind="send",
        timestamp=timestamp,
        reference="test",
        counterparty=counterparty,
        receipt_code=receipt_code,
        timestamp_degraded=degraded,
    )


def _entry(
    entry_id: str,
    *,
    payee: str = "DANIEL",
    amount: str = "6800.00",
    timestamp: int = WHEN,
    receipt_code: str | None = None,
) -> LedgerEntry:
    return LedgerEntry(
        id=entry_id,
        amount=Decimal(amount),
        payee=payee,
        category="Family",
        timestamp=timestamp,
        receipt_code=receipt_code,
    )


class TestDetectDuplicates:
    def test_same_receipt_is_exact(self):
        history = [_entry("e1", payee="SOMEONE ELSE", amount="1.00", receipt_code="TL2PNBUD8H")]
        check = detect_duplicates(_make_candidate(receipt_code="tl2pnbud8h"), history)
        assert check.confidence == "exact"
        assert check.entry_ids == ("e1",)
        assert check.reasons == ("M-PESA reference code matches",)
        assert check.is_duplicate

    def test_amount_date_and_payee_is_likely(self):
        history = [_entry("e1", amount="6800.50", timestamp=WHEN + DAY)]
        check = detect_duplicates(_make_candidate(), history)
        assert check.confidence == "likely"
        assert check.reasons == ("Same amount", "Within 2 days", "Same recipient")

    def test_amount_and_date_is_possible(self):
        history = [_entry("e1", payee="JANE")]
        check = detect_duplicates(_make_candidate(), history)
        assert check.confidence == "possible"
        assert check.reasons == ("Same amount", "Within 2 days")

    def test_amount_and_payee_is_possible(self):
        history = [_entry("e1", timestamp=WHEN - 10 * DAY)]
        check = detect_duplicates(_make_candidate(), history)
        assert check.confidence == "possible"
        assert check.reasons == ("Same amount", "Same recipient")

    def test_amount_alone_is_not_a_duplicate(self):
        history = [_entry("e1", payee="JANE", timestamp=WHEN - 10 * DAY)]
        check = detect_duplicates(_make_candidate(), history)
        assert check.confidence == "none"
        assert not check.is_duplicate
        assert check.entry_ids == ()

    def test_amount_difference_of_one_is_different(self):
        history = [_entry("e1", amount="6801.00")]
        assert detect_duplicates(_make_candidate(), history).confidence == "none"

    def test_degraded_timestamp_never_matches_on_date(self):
        history = [_entry("e1", payee="JANE")]
        check = detect_duplicates(_make_candidate(degraded=True), history)
        assert check.confidence == "none"

    def test_best_match_first(self):
        history = [
            _entry("possible", payee="JANE"),
            _entry("likely"),
            _entry("exact", receipt_code="TL2PNBUD8H"),
        ]
        check = detect_duplicates(_make_candidate(receipt_code="TL2PNBUD8H"), history)
        assert check.confidence == "exact"
        assert check.entry_ids == ("exact", "likely", "possible")

    def test_empty_history(self):
        assert detect_duplicates(_make_candidate(), []).confidence == "none"
