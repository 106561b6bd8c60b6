"""Duplicate detection of candidates against the existing ledger.

Two strategies, strongest first:

1. Strict: the M-Pesa receipt code of the candidate equals one already in
   the ledger (case-insensitive). Confidence ``"exact"``.
2. Fuzzy: amount within one unit, timestamps within two days and the same
   payee (exact or containment after normalization). All three give
   ``"likely"``; amount plus one of the others gives ``"possible"``.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from mpesa_reconcile.models import DuplicateCheck, LedgerEntry, TransactionCandidate
from mpesa_reconcile.payees import names_match

AMOUNT_TOLERANCE = Decimal("1")
DAYS_TOLERANCE = 2
MS_PER_DAY = 24 * 60 * 60 * 1000

_RANK = {"exact": 3, "likely": 2, "possible": 1, "none": 0}


def detect_duplicates(
    candidate: TransactionCandidate, history: Iterable[LedgerEntry]
) -> DuplicateCheck:
    """Compare a candidate with every ledger entry.

    Returns:
        A :class:`DuplicateCheck` carrying the highest confidence found, the
        ids of all matching entries (best first) and the reasons for the
        best one.
    """
    matches: list[tuple[str, LedgerEntry, list[str]]] = []

    for entry in history:
        if _same_receipt(candidate.receipt_code, entry.receipt_code):
            matches.append(("exact", entry, ["M-PESA reference code matches"]))
            continue

        reasons = []
        amount_ok = abs(candidate.amount - entry.amount) < AMOUNT_TOLERANCE
        days_apart = abs(candidate.timestamp - entry.timestamp) / MS_PER_DAY
        date_ok = not candidate.timestamp_degraded and days_apart <= DAYS_TOLERANCE
        payee_ok = names_match(candidate.counterparty, entry.payee)
        if amount_ok:
            reasons.append("Same amount")
        if date_ok:
            reasons.append(f"Within {DAYS_TOLERANCE} days")
        if payee_ok:
            reasons.append("Same recipient")

        if amount_ok and date_ok and payee_ok:
            matches.append(("likely", entry, reasons))
        elif amount_ok and (date_ok or payee_ok):
            matches.append(("possible", entry, reasons))

    if not matches:
        return DuplicateCheck()

    # stable: ledger order within a confidence level
    matches.sort(key=lambda m: _RANK[m[0]], reverse=True)
    confidence, _, reasons = matches[0]
    return DuplicateCheck(
        confidence=confidence,
        entry_ids=tuple(entry.id for _, entry, _ in matches),
        reasons=tuple(reasons),
    )


def _same_receipt(first: str | None, second: str | None) -> bool:
    if not first or not second:
        return False
    return first.strip().upper() == second.strip().upper()
