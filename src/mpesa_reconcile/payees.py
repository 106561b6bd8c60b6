"""Payee matcher: suggest a payee name and category from ledger history.

Candidates are matched against existing ledger entries in order of
decreasing certainty:

1. **phone-exact** (high): the last nine digits of the phone numbers agree.
2. **phone-partial** (medium): the last six digits agree, or one number is
   masked (``0712***678``) and its visible digits agree with the other.
3. **name-fuzzy**: normalized names are equal (high) or one contains the
   other, both at least three characters long (medium).

The first tier with any hit decides. The suggested name is the payee of the
most recent entry in that tier, and the suggested category is the most
common category among its entries.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from mpesa_reconcile.models import (
    UNCATEGORIZED,
    UNKNOWN_PAYEE,
    LedgerEntry,
    PayeeMatch,
    TransactionCandidate,
)

_SPACE_RE = re.compile(r"\s+")
_NAME_PHONE_RE = re.compile(r"\b0?\d{9,10}\b")
_PHONE_RE = re.compile(r"(?<![\d*])(?:\+?254|0)[17][\d*]{5,9}\d(?![\d*])")

EXACT_DIGITS = 9
PARTIAL_DIGITS = 6


# ---------------------------------------------------------------------------
# Name helpers (shared with duplicates.py)
# ---------------------------------------------------------------------------


def normalize_name(name: str | None) -> str:
    """Lowercase, squash whitespace and drop phone numbers."""
    if not name:
        return ""
    collapsed = _SPACE_RE.sub(" ", name.strip().lower())
    return _SPACE_RE.sub(" ", _NAME_PHONE_RE.sub("", collapsed)).strip()


def names_match(first: str | None, second: str | None, strict: bool = False) -> bool:
    """Equal normalized names, or (unless *strict*) containment of one in the other."""
    a, b = normalize_name(first), normalize_name(second)
    if not a or not b:
        return False
    if a == b:
        return True
    if strict:
        return False
    return len(a) >= 3 and len(b) >= 3 and (a in b or b in a)


def display_name(counterparty: str | None) -> str:
    """Counterparty text without phone numbers, or ``"Unknown"``."""
    if not counterparty:
        return UNKNOWN_PAYEE
    cleaned = _SPACE_RE.sub(" ", _PHONE_RE.sub(" ", counterparty)).strip(" .,;:-")
    return cleaned or UNKNOWN_PAYEE


# ---------------------------------------------------------------------------
# Phone helpers
# ---------------------------------------------------------------------------


def _local_phone(raw: str | None) -> str | None:
    """Canonical ``07...`` form (masks kept), or ``None`` if there is no number."""
    if not raw:
        return None
    match = _PHONE_RE.search(raw)
    if match is None:
        return None
    number = match.group(0).lstrip("+")
    if number.startswith("254"):
        number = "0" + number[3:]
    return number


def _phones_exact(a: str, b: str) -> bool:
    if "*" in a or "*" in b:
        return False
    return len(a) >= EXACT_DIGITS and len(b) >= EXACT_DIGITS and a[-EXACT_DIGITS:] == b[-EXACT_DIGITS:]


def _phones_partial(a: str, b: str) -> bool:
    if "*" in a and "*" in b:
        return False
    if "*" in a or "*" in b:
        masked, full = (a, b) if "*" in a else (b, a)
        head, tail = masked.split("*", 1)[0], masked.rsplit("*", 1)[1]
        return bool(head or tail) and full.startswith(head) and full.endswith(tail)
    return a[-PARTIAL_DIGITS:] == b[-PARTIAL_DIGITS:]


def _entry_phone(entry: LedgerEntry) -> str | None:
    return _local_phone(entry.phone_number) or _local_phone(entry.payee) or _local_phone(entry.notes)


# ---------------------------------------------------------------------------
# Category helpers
# ---------------------------------------------------------------------------


def _category_vote(entries: list[LedgerEntry]) -> tuple[str | None, float | None]:
    if not entries:
        return None, None
    counts = Counter(entry.category or UNCATEGORIZED for entry in entries)
    best: str | None = None
    best_count = 0
    for category, count in counts.items():
        if category == UNCATEGORIZED and len(counts) > 1:
            continue
        if count > best_count:
            best, best_count = category, count
    return best, round(best_count / len(entries) * 100, 1)


def most_common_category(name: str | None, history: Iterable[LedgerEntry]) -> str | None:
    """Most common category among entries whose payee matches *name*.

    ``"Uncategorized"`` only wins when it is the only category seen.
    Returns ``None`` when nothing matches.
    """
    if not name:
        return None
    matching = [entry for entry in history if entry.payee and names_match(name, entry.payee)]
    return _category_vote(matching)[0]


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def match_payee(candidate: TransactionCandidate, history: list[LedgerEntry]) -> PayeeMatch:
    """Find the best payee suggestion for a single candidate."""
    phone = _local_phone(candidate.phone_number) or _local_phone(candidate.counterparty)

    tiers: list[tuple[str, str, list[LedgerEntry]]] = []
    if phone:
        phones = [(entry, _entry_phone(entry)) for entry in history]
        tiers.append(
            ("phone-exact", "high", [e for e, p in phones if p and _phones_exact(phone, p)])
        )
        tiers.append(
            ("phone-partial", "medium", [e for e, p in phones if p and _phones_partial(phone, p)])
        )
    if candidate.counterparty:
        tiers.append(
            (
                "name-fuzzy",
                "high",
                [e for e in history if names_match(candidate.counterparty, e.payee, strict=True)],
            )
        )
        tiers.append(
            (
                "name-fuzzy",
                "medium",
                [e for e in history if names_match(candidate.counterparty, e.payee)],
            )
        )

    for matched_by, confidence, entries in tiers:
        if not entries:
            continue
        latest = max(entries, key=lambda e: e.timestamp)
        category, share = _category_vote(entries)
        return PayeeMatch(
            confidence=confidence,
            suggested_name=latest.payee or display_name(candidate.counterparty),
            matched_by=matched_by,
            suggested_category=category,
            category_confidence=share,
        )

    return PayeeMatch(confidence="low", suggested_name=display_name(candidate.counterparty))


def batch_match_payees(
    candidates: list[TransactionCandidate], history: Iterable[LedgerEntry]
) -> list[PayeeMatch]:
    """Match every candidate against the ledger history.

    Returns one :class:`PayeeMatch` per candidate, in the same order.
    """
    entries = list(history)
    return [match_payee(candidate, entries) for candidate in candidates]
