"""Ledger persistence.

:class:`LedgerStore` is the boundary the pipeline commits through.
:class:`JsonLedgerStore` is the reference implementation: one JSON file
holding the ledger owner, the committed entries and the known recurring
series::

    {
        "owner": "me",
        "entries": [
            {"id": "...", "amount": "6800.00", "payee": "DANIEL", ...},
            ...
        ],
        "series": [
            {"id": "rent", "name": "Rent", "payee": "LANDLORD", "amount": "25000", ...}
        ]
    }

Amounts are stored as strings so they round-trip as exact decimals. A save
writes a temporary file next to the ledger and swaps it in with
``os.replace``, so a failed save leaves the previous file untouched.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Protocol

from mpesa_reconcile.models import LedgerEntry, RecurringSeries

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    """Protocol that ledger stores must implement.

    ``save_entries`` is all-or-nothing: either every entry is stored or an
    exception is raised and nothing is.
    """

    def load_entries(self) -> list[LedgerEntry]: ...

    def load_series(self) -> list[RecurringSeries]: ...

    def save_entries(self, entries: list[LedgerEntry]) -> None: ...


class JsonLedgerStore:
    """Ledger kept in a single JSON file.

    Args:
        path: Location of the JSON file. It is created on the first save.
        owner: Owner name stamped on every saved entry.
    """

    def __init__(self, path: Path, owner: str = "me") -> None:
        self.path = Path(path)
        self.owner = owner

    def load_entries(self) -> list[LedgerEntry]:
        return [entry_from_dict(item) for item in self._read().get("entries", [])]

    def load_series(self) -> list[RecurringSeries]:
        return [series_from_dict(item) for item in self._read().get("series", [])]

    def save_entries(self, entries: list[LedgerEntry]) -> None:
        """Append *entries* and bump ``last_paid`` on the series they link to."""
        data = self._read()
        stored = data.setdefault("entries", [])
        for entry in entries:
            record = entry_to_dict(entry)
            record["owner"] = self.owner
            stored.append(record)

        latest: dict[str, int] = {}
        for entry in entries:
            if entry.series_id:
                latest[entry.series_id] = max(entry.timestamp, latest.get(entry.series_id, 0))
        if latest:
            data["series"] = [
                _bump_last_paid(item, latest) for item in data.get("series", [])
            ]

        data.setdefault("owner", self.owner)
        self._write(data)
        logger.info("Saved %d entries to %s", len(entries), self.path)

    def save_series(self, series: list[RecurringSeries]) -> None:
        """Replace the stored recurring series."""
        data = self._read()
        data["series"] = [series_to_dict(s) for s in series]
        data.setdefault("owner", self.owner)
        self._write(data)

    def _read(self) -> dict:
        if not self.path.is_file():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def entry_to_dict(entry: LedgerEntry) -> dict:
    data = asdict(entry)
    data["amount"] = str(entry.amount)
    return data


def entry_from_dict(data: dict) -> LedgerEntry:
    known = {f.name for f in fields(LedgerEntry)}
    values = {k: v for k, v in data.items() if k in known}
    values["amount"] = Decimal(str(values["amount"]))
    return LedgerEntry(**values)


def series_to_dict(series: RecurringSeries) -> dict:
    data = asdict(series)
    data["amount"] = str(series.amount)
    return data


def series_from_dict(data: dict) -> RecurringSeries:
    known = {f.name for f in fields(RecurringSeries)}
    values = {k: v for k, v in data.items() if k in known}
    values["amount"] = Decimal(str(values["amount"]))
    return RecurringSeries(**values)


def _bump_last_paid(item: dict, latest: dict[str, int]) -> dict:
    paid = latest.get(item.get("id", ""))
    if paid is None:
        return item
    series = series_from_dict(item)
    if series.last_paid is None or paid > series.last_paid:
        series = replace(series, last_paid=paid)
    return series_to_dict(series)
