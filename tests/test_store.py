"""Tests for the JSON ledger store."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

import pytest

from mpesa_reconcile import store as store_module
from mpesa_reconcile.models import LedgerEntry, RecurringSeries
from mpesa_reconcile.store import JsonLedgerStore


def _entry(entry_id: str, amount: str = "6800.10", series_id: str | None = None, ts: int = 1000):
    return LedgerEntry(
        id=entry_id,
        amount=Decimal(amount),
        payee="DANIEL",
        category="Family",
        timestamp=ts,
        receipt_code="TL2PNBUD8H",
        phone_number="0712345678",
        series_id=series_id,
        is_recurring=series_id is not None,
    )


class TestJsonLedgerStore:
    def test_missing_file_is_empty(self, tmp_path: Path):
        store = JsonLedgerStore(tmp_path / "ledger.json")
        assert store.load_entries() == []
        assert store.load_series() == []

    def test_round_trip_keeps_exact_amounts(self, tmp_path: Path):
        store = JsonLedgerStore(tmp_path / "ledger.json")
        entry = _entry("a")
        store.save_entries([entry])
        assert store.load_entries() == [entry]

    def test_amounts_stored_as_strings(self, tmp_path: Path):
        path = tmp_path / "ledger.json"
        JsonLedgerStore(path, owner="wanjiku").save_entries([_entry("a")])
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["entries"][0]["amount"] == "6800.10"
        assert data["entries"][0]["owner"] == "wanjiku"
        assert data["owner"] == "wanjiku"

    def test_saves_append(self, tmp_path: Path):
        store = JsonLedgerStore(tmp_path / "data" / "ledger.json")
        store.save_entries([_entry("a")])
        store.save_entries([_entry("b"), _entry("c")])
        assert [e.id for e in store.load_entries()] == ["a", "b", "c"]

    def test_series_round_trip(self, tmp_path: Path, rent_series):
        store = JsonLedgerStore(tmp_path / "ledger.json")
        store.save_series([rent_series])
        assert store.load_series() == [rent_series]

    def test_commit_bumps_series_last_paid(self, tmp_path: Path, rent_series):
        store = JsonLedgerStore(tmp_path / "ledger.json")
        store.save_series([rent_series])
        newer = rent_series.last_paid + 1
        store.save_entries([_entry("a", series_id="rent", ts=newer)])
        assert store.load_series()[0].last_paid == newer

    def test_older_payment_does_not_move_last_paid_back(self, tmp_path: Path, rent_series):
        store = JsonLedgerStore(tmp_path / "ledger.json")
        store.save_series([rent_series])
        store.save_entries([_entry("a", series_id="rent", ts=1)])
        assert store.load_series()[0].last_paid == rent_series.last_paid

    def test_failed_write_leaves_file_untouched(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "ledger.json"
        store = JsonLedgerStore(path)
        store.save_entries([_entry("a")])
        before = path.read_text(encoding="utf-8")

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(store_module.os, "replace", boom)
        with pytest.raises(OSError):
            store.save_entries([_entry("b")])

        assert path.read_text(encoding="utf-8") == before
        assert sorted(p.name for p in tmp_path.iterdir()) == ["ledger.json"]

    def test_unknown_fields_ignored(self, tmp_path: Path):
        path = tmp_path / "ledger.json"
        path.write_text(
            json.dumps(
                {
                    "entries": [
                        {
                            "id": "x",
                            "amount": "10",
                            "payee": "P",
                            "category": "C",
                            "timestamp": 5,
                            "synced": True,
                        }
                    ],
                    "series": [
                        {"id": "s", "name": "S", "payee": "P", "amount": 7, "extra": 1}
                    ],
                }
            ),
            encoding="utf-8",
        )
        store = JsonLedgerStore(path)
        assert store.load_entries()[0].amount == Decimal("10")
        assert store.load_series() == [
            RecurringSeries(id="s", name="S", payee="P", amount=Decimal("7"))
        ]
