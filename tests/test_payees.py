"""Tests for the payee matcher."""

from __future__ import annotations

from decimal import Decimal

from mpesa_reconcile.models import LedgerEntry, TransactionCandidate
from mpesa_reconcile.payees import (
    batch_match_payees,
    display_name,
    match_payee,
    most_common_category,
    names_match,
    normalize_name,
)
from samples import ms


def _make_candidate(
    counterparty: str | None,
    *,
    phone_number: str | None = None,
    amount: str = "100.00",
) -> TransactionCandidate:
    return TransactionCandidate(
        amount=Decimal(amount),
        kind="send",
        timestamp=ms(2025, 12, 4, 12, 0),
        reference=counterparty or "",
        counterparty=counterparty,
        phone_number=phone_number,
    )


class TestNames:
    def test_normalize_drops_phone(self):
        assert normalize_name("  DANIEL   Kamau 0712345678 ") == "daniel kamau"

    def test_exact_and_containment(self):
        assert names_match("DANIEL KAMAU", "daniel kamau")
        assert names_match("DANIEL KAMAU 0712345678", "KAMAU")
        assert not names_match("DANIEL KAMAU", "KAMAU", strict=True)

    def test_short_names_need_exact_match(self):
        assert not names_match("AB", "ABC")
        assert names_match("AB", "ab")

    def test_empty_never_matches(self):
        assert not names_match("", "")
        assert not names_match(None, "DANIEL")

    def test_display_name(self):
        assert display_name("DANIEL 0712345678") == "DANIEL"
        assert display_name("0712345678") == "Unknown"
        assert display_name(None) == "Unknown"


class TestMatchPayee:
    def test_phone_exact(self, sample_entries):
        match = match_payee(_make_candidate("DANNY", phone_number="0712345678"), sample_entries)
        assert match.matched_by == "phone-exact"
        assert match.confidence == "high"
        # most recent entry with that number
        assert match.suggested_name == "DANIEL K"

    def test_phone_exact_across_formats(self, sample_entries):
        match = match_payee(_make_candidate("X", phone_number="+254712345678"), sample_entries)
        assert match.matched_by == "phone-exact"

    def test_phone_from_counterparty_text(self, sample_entries):
        match = match_payee(_make_candidate("DANNY 0712345678"), sample_entries)
        assert match.matched_by == "phone-exact"

    def test_phone_partial(self, sample_entries):
        match = match_payee(_make_candidate("SOMEONE", phone_number="0799345678"), sample_entries)
        assert match.matched_by == "phone-partial"
        assert match.confidence == "medium"

    def test_masked_number_is_partial(self, sample_entries):
        match = match_payee(_make_candidate("X", phone_number="0733123999"), sample_entries)
        assert match.matched_by == "phone-partial"
        assert match.suggested_name == "MAMA MBOGA"

    def test_name_exact(self, sample_entries):
        match = match_payee(_make_candidate("Mama Mboga"), sample_entries)
        assert match.matched_by == "name-fuzzy"
        assert match.confidence == "high"
        assert match.suggested_category == "Food & Drinks"
        assert match.category_confidence == 100.0

    def test_name_containment(self, sample_entries):
        match = match_payee(_make_candidate("NAIVAS NAIROBI TILL 2345"), sample_entries)
        assert match.matched_by == "name-fuzzy"
        assert match.confidence == "medium"
        assert match.suggested_name == "NAIVAS"
        assert match.suggested_category == "Groceries"

    def test_uncategorized_loses_the_vote(self, sample_entries):
        match = match_payee(_make_candidate("X", phone_number="0712345678"), sample_entries)
        # Family, Family, Uncategorized
        assert match.suggested_category == "Family"
        assert match.category_confidence == 66.7

    def test_no_match(self, sample_entries):
        match = match_payee(_make_candidate("NEW PERSON 0700111222"), sample_entries)
        assert match.confidence == "low"
        assert match.matched_by == "none"
        assert match.suggested_name == "NEW PERSON"
        assert match.suggested_category is None

    def test_no_counterparty(self, sample_entries):
        match = match_payee(_make_candidate(None), sample_entries)
        assert match.suggested_name == "Unknown"

    def test_empty_history(self):
        match = match_payee(_make_candidate("DANIEL 0712345678"), [])
        assert match.confidence == "low"
        assert match.suggested_name == "DANIEL"


class TestMostCommonCategory:
    def test_only_uncategorized(self):
        history = [
            LedgerEntry(
                id="1",
                amount=Decimal("1"),
                payee="X SHOP",
                category="Uncategorized",
                timestamp=0,
            )
        ]
        assert most_common_category("x shop", history) == "Uncategorized"

    def test_majority(self, sample_entries):
        assert most_common_category("daniel kamau", sample_entries) == "Family"

    def test_no_name(self, sample_entries):
        assert most_common_category(None, sample_entries) is None
        assert most_common_category("nobody here", sample_entries) is None


class TestBatch:
    def test_one_result_per_candidate_in_order(self, sample_entries):
        candidates = [
            _make_candidate("NEW PERSON"),
            _make_candidate("Mama Mboga"),
            _make_candidate(None),
        ]
        matches = batch_match_payees(candidates, sample_entries)
        assert [m.suggested_name for m in matches] == ["NEW PERSON", "MAMA MBOGA", "Unknown"]
