"""Tests for mpesa_reconcile.parsers.statement -- statement text parsing.

Covers page marker, header and disclaimer removal, lines wrapped over
several physical lines, dropped charge lines, conversion to candidates and
rendering lines back into notification messages.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from mpesa_reconcile.errors import ParseError
from mpesa_reconcile.models import LedgerLine
from mpesa_reconcile.parsers import message, statement
from mpesa_reconcile.parsers.statement import (
    counterparty_from_details,
    parse,
    scan,
    to_candidate,
    to_messages,
)
from samples import ms


def _make_line(
    *,
    receipt_code: str = "TL2PNBUD8H",
    completed_at: str = "2025-12-04 12:25:14",
    details: str = "Customer Transfer to 0712345678 - DANIEL KAMAU",
    status: str = "COMPLETED",
    paid_in: str = "0.00",
    withdrawn: str = "6800.00",
    balance: str = "1045.00",
) -> LedgerLine:
    return LedgerLine(
        receipt_code=receipt_code,
        completed_at=completed_at,
        details=details,
        status=status,
        paid_in=Decimal(paid_in),
        withdrawn=Decimal(withdrawn),
        balance=Decimal(balance),
    )


# ---------------------------------------------------------------------------
# scan / parse
# ---------------------------------------------------------------------------


class TestScan:
    def test_lines_found(self, statement_text):
        lines = parse(statement_text)
        assert [line.receipt_code for line in lines] == ["TL2PNBUD8H", "TL5RECV001", "TL6FAIL001"]

    def test_wrapped_line_joined(self, statement_text):
        first = parse(statement_text)[0]
        assert first.details == "Customer Transfer to 0712345678 - DANIEL KAMAU"
        assert first.completed_at == "2025-12-04 12:25:14"
        assert first.status == "COMPLETED"
        assert first.withdrawn == Decimal("6800.00")
        assert first.paid_in == Decimal("0.00")
        assert first.balance == Decimal("1045.00")

    def test_charge_lines_dropped(self, statement_text):
        result = scan(statement_text)
        assert result.fees == 1
        assert all("Charge" not in line.details for line in result.lines)

    def test_disclaimer_and_page_markers_removed(self, statement_text):
        last = parse(statement_text)[-1]
        assert last.status == "FAILED"
        assert last.balance == Decimal("3022.00")

    def test_paid_in_line(self, statement_text):
        received = parse(statement_text)[1]
        assert received.paid_in == Decimal("2000.00")
        assert received.withdrawn == Decimal("0.00")

    def test_unmatched_segment_reported(self):
        text = (
            "TL7BROKEN1 2025-12-07 08:00:00 Something without any amounts\n"
            "TL8GOOD001 2025-12-07 09:00:00 Merchant Payment to 123456 - KFC "
            "COMPLETED 0.00 850.00 2,000.00\n"
        )
        result = scan(text)
        assert len(result.lines) == 1
        assert result.lines[0].receipt_code == "TL8GOOD001"
        assert result.unmatched == ["TL7BROKEN1 2025-12-07 08:00:00 Something without any amounts"]

    def test_empty_text(self):
        result = scan("   \n ")
        assert result.lines == []
        assert result.unmatched == []
        assert result.fees == 0

    def test_preamble_only(self):
        assert parse("M-PESA STATEMENT\nCustomer Name: JOHN DOE\n") == []


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class TestToCandidate:
    def test_withdrawn_is_send(self):
        c = to_candidate(_make_line())
        assert c.kind == "send"
        assert c.amount == Decimal("6800.00")
        assert c.counterparty == "DANIEL KAMAU"
        assert c.phone_number == "0712345678"
        assert c.receipt_code == "TL2PNBUD8H"
        assert c.timestamp == ms(2025, 12, 4, 12, 25, 14)
        assert c.reference == "TL2PNBUD8H Customer Transfer to 0712345678 - DANIEL KAMAU"
        assert c.timestamp_degraded is False

    def test_paid_in_is_receive(self):
        c = to_candidate(_make_line(paid_in="2000.00", withdrawn="0.00"))
        assert c.kind == "receive"
        assert c.amount == Decimal("2000.00")

    def test_no_amount_raises(self):
        with pytest.raises(ParseError):
            to_candidate(_make_line(withdrawn="0.00"))

    def test_bad_completion_time_degrades(self, monkeypatch):
        monkeypatch.setattr(statement, "now_ms", lambda: 42)
        c = to_candidate(_make_line(completed_at="2025-13-45 99:00:00"))
        assert c.timestamp == 42
        assert c.timestamp_degraded is True

    @pytest.mark.parametrize(
        "details, expected",
        [
            ("Customer Transfer to 0712345678 - JOHN DOE", ("JOHN DOE", "0712345678")),
            ("Merchant Payment to 123456 - KFC", ("KFC", None)),
            ("OD Loan Repayment to 232323", ("OD Loan Repayment to 232323", None)),
        ],
    )
    def test_counterparty_from_details(self, details, expected):
        assert counterparty_from_details(details) == expected


class TestRead:
    def test_only_completed_lines_become_candidates(self, statement_text):
        result = statement.read(statement_text)
        assert [c.receipt_code for c in result.candidates] == ["TL2PNBUD8H", "TL5RECV001"]
        assert result.segments == 3
        assert result.errors == []

    def test_warnings(self, statement_text):
        warnings = statement.read(statement_text).warnings
        assert "skipped 1 charge line(s)" in warnings
        assert "TL6FAIL001: skipped failed transaction" in warnings


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestToMessages:
    def test_withdrawal_message_text(self):
        assert to_messages([_make_line()]) == [
            "TL2PNBUD8H Confirmed. Ksh6,800.00 sent to DANIEL KAMAU on 4/12/25 "
            "at 12:25 PM. New M-PESA balance is Ksh1,045.00."
        ]

    def test_line_without_amount_skipped(self):
        assert to_messages([_make_line(withdrawn="0.00")]) == []

    def test_messages_parse_back(self, statement_text):
        lines = [line for line in parse(statement_text) if line.status == "COMPLETED"]
        for line, text in zip(lines, to_messages(lines)):
            parsed = message.parse(text)
            direct = to_candidate(line)
            assert parsed.amount == direct.amount
            assert parsed.kind == direct.kind
            assert parsed.counterparty == direct.counterparty
            assert parsed.receipt_code == line.receipt_code
