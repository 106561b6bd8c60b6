"""Tests for the CSV export writer and the summary printers."""

from __future__ import annotations

import csv
from decimal import Decimal
from pathlib import Path

from mpesa_reconcile.analysis import analyze_messages
from mpesa_reconcile.export import CSV_COLUMNS, export, print_analysis, print_summary
from mpesa_reconcile.models import ImportBatch, LedgerEntry
from mpesa_reconcile.review import ReviewSummary
from samples import ms


def _entry(entry_id: str, timestamp: int, payee: str = "DANIEL", amount: str = "100.00"):
    return LedgerEntry(
        id=entry_id,
        amount=Decimal(amount),
        payee=payee,
        category="Family",
        timestamp=timestamp,
    )


def _read_csv(path: Path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


class TestExport:
    def test_header_and_order(self, tmp_path: Path):
        entries = [
            _entry("late", ms(2025, 12, 5, 8, 0)),
            _entry("early", ms(2025, 11, 30, 20, 15)),
        ]
        path = export(entries, tmp_path / "out")
        assert path == tmp_path / "out" / "ledger.csv"

        with open(path, newline="", encoding="utf-8") as f:
            assert next(csv.reader(f)) == CSV_COLUMNS

        rows = _read_csv(path)
        assert [r["id"] for r in rows] == ["early", "late"]
        assert rows[0]["date"] == "2025-11-30 20:15"
        assert rows[0]["month"] == "2025-11"
        assert rows[0]["amount"] == "100.00"
        assert rows[0]["receipt_code"] == ""
        assert rows[0]["is_recurring"] == "False"

    def test_custom_name_and_overwrite(self, tmp_path: Path):
        export([_entry("a", 0)], tmp_path, name="december")
        path = export([], tmp_path, name="december")
        assert path.name == "december.csv"
        assert _read_csv(path) == []


class TestPrintSummary:
    def test_sections(self, capsys):
        batch = ImportBatch(
            segments=5,
            parsed=4,
            failed=1,
            failed_samples=["Hello, your data bundle"],
            excluded=2,
            warnings=["1 transaction(s) may already be in the ledger"],
        )
        review = ReviewSummary(
            total=2, accepted=1, edited=1, committable_amount=Decimal("8050.00")
        )
        committed = [
            _entry("a", 0, amount="6800.00"),
            LedgerEntry(
                id="b",
                amount=Decimal("1250.00"),
                payee="NAIVAS",
                category="Food & Drinks",
                timestamp=0,
            ),
        ]
        print_summary(batch, review, committed)
        out = capsys.readouterr().out
        assert "Messages: 5 found, 4 parsed, 1 failed" in out
        assert "Skipped:  2 (kind not imported)" in out
        assert "Saved:    2 entries (Ksh 8,050.00)" in out
        assert "Family:" in out
        assert "Ksh 6,800.00" in out
        assert "Hello, your data bundle" in out
        assert "may already be in the ledger" in out

    def test_nothing_saved(self, capsys):
        print_summary(ImportBatch(segments=1, parsed=1), ReviewSummary(total=1, pending=1), [])
        out = capsys.readouterr().out
        assert "Saved:    0 entries" in out
        assert "Spending by category" not in out


class TestPrintAnalysis:
    def test_report(self, capsys, sms_dump):
        print_analysis(analyze_messages(sms_dump))
        out = capsys.readouterr().out
        assert "Spent:    Ksh 8,550.00" in out
        assert "Received: Ksh 1,000.00" in out
        assert "Top:      Other (Ksh 6,800.00)" in out
        assert "Food & Drinks:" in out

    def test_empty(self, capsys):
        print_analysis(analyze_messages(""))
        assert "No transactions found." in capsys.readouterr().out
