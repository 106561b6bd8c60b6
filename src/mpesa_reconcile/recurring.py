"""Recurring obligations: matching candidates to series, and detection.

Matching (``batch_match_recurring``) scores each candidate against every
active :class:`~mpesa_reconcile.models.RecurringSeries`:

- payee equal (case-insensitive): 40 points, containment: 20 points
- category equal: 20 points
- amount within 10%: 20 points, within 20%: 10 points
- due date: up to 20 points, depending on how much of the payment period
  has passed since the series was last paid

The best series scoring 40 or more wins (80+ high, 60+ medium, else low).

Detection (``detect_recurring``) scans ledger history for payees that
appear regularly with similar amounts:

- A payee is considered recurring if it appears in 3+ distinct months
- Amounts must be within 20% variance to be considered "similar"
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from mpesa_reconcile.models import (
    LedgerEntry,
    RecurringMatch,
    RecurringSeries,
    TransactionCandidate,
)

MS_PER_DAY = 24 * 60 * 60 * 1000

PERIOD_DAYS: dict[str, int] = {
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
    "yearly": 365,
}
DEFAULT_PERIOD_DAYS = 30

MIN_MATCH_SCORE = 40


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def amount_within(amount: Decimal, expected: Decimal, tolerance: str) -> bool:
    """True when *amount* is within *tolerance* (a fraction) of *expected*."""
    return abs(amount - expected) <= expected * Decimal(tolerance)


def due_score(last_paid: int | None, frequency: str | None, now: int) -> float:
    """How "due" a series is, from 0.0 (just paid) to 1.0 (due or overdue).

    Within the last 20% of the period the score is 0.8. Before that it grows
    linearly from 0 to 0.6. Unknown last payment or frequency gives 0.5.
    """
    if not last_paid or not frequency:
        return 0.5
    days = (now - last_paid) / MS_PER_DAY
    period = PERIOD_DAYS.get(frequency, DEFAULT_PERIOD_DAYS)
    if days >= period:
        return 1.0
    if days >= period - period * 0.2:
        return 0.8
    return days / period * 0.6


def score_series(
    candidate: TransactionCandidate,
    payee_name: str,
    category: str | None,
    series: RecurringSeries,
    now: int,
) -> float:
    """Score one candidate against one series (0-100)."""
    score = 0.0

    payee = payee_name.lower()
    expected_payee = series.payee.lower()
    if payee and payee == expected_payee:
        score += 40
    elif payee and expected_payee and (payee in expected_payee or expected_payee in payee):
        score += 20

    if category and series.category == category:
        score += 20

    if candidate.amount and series.amount:
        if amount_within(candidate.amount, series.amount, "0.1"):
            score += 20
        elif amount_within(candidate.amount, series.amount, "0.2"):
            score += 10

    score += due_score(series.last_paid, series.frequency, now) * 20
    return score


def match_recurring(
    candidate: TransactionCandidate,
    payee_name: str,
    category: str | None,
    series: Iterable[RecurringSeries],
    now: int | None = None,
) -> RecurringMatch:
    """Link a single candidate to the best-scoring active series, if any."""
    if now is None:
        now = int(time.time() * 1000)

    best: RecurringSeries | None = None
    best_score = 0.0
    for item in series:
        if not item.is_active:
            continue
        score = score_series(candidate, payee_name, category, item, now)
        if score >= MIN_MATCH_SCORE and (best is None or score > best_score):
            best, best_score = item, score

    if best is None:
        return RecurringMatch(confidence="low", name=payee_name, match_score=0)

    if best_score >= 80:
        confidence = "high"
    elif best_score >= 60:
        confidence = "medium"
    else:
        confidence = "low"

    return RecurringMatch(
        confidence=confidence,
        name=best.payee,
        match_score=int(best_score + 0.5),
        series_id=best.id,
        expected_amount=best.amount,
        last_paid=best.last_paid,
        frequency=best.frequency,
    )


def batch_match_recurring(
    items: list[tuple[TransactionCandidate, str, str | None]],
    series: Iterable[RecurringSeries],
    now: int | None = None,
) -> list[RecurringMatch]:
    """Match ``(candidate, payee_name, category)`` triples to recurring series.

    Returns one :class:`RecurringMatch` per item, in the same order. *now*
    (epoch milliseconds) defaults to the current time.
    """
    known = list(series)
    if now is None:
        now = int(time.time() * 1000)
    return [
        match_recurring(candidate, payee_name, category, known, now)
        for candidate, payee_name, category in items
    ]


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_recurring(history: Iterable[LedgerEntry]) -> list[str]:
    """Detect payees that appear to be recurring payments.

    Identifies payees that:
    1. Appear in 3 or more distinct months
    2. Have similar amounts (within 20% variance)

    Args:
        history: Committed ledger entries.

    Returns:
        Upper-cased payee names that appear to be recurring, in first-seen
        order.
    """
    payee_data: dict[str, list[tuple[str, Decimal]]] = defaultdict(list)
    for entry in history:
        if not entry.payee:
            continue
        month = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m")
        payee_data[entry.payee.strip().upper()].append((month, abs(entry.amount)))

    recurring_payees: list[str] = []

    for payee, occurrences in payee_data.items():
        if len(occurrences) < 3:
            continue

        # Multiple payments in the same month count as one
        months_seen: dict[str, list[Decimal]] = defaultdict(list)
        for month, amount in occurrences:
            months_seen[month].append(amount)

        if len(months_seen) < 3:
            continue

        monthly_amounts = [sum(amounts) / len(amounts) for amounts in months_seen.values()]

        if _amounts_are_similar(monthly_amounts):
            recurring_payees.append(payee)

    return recurring_payees


def _amounts_are_similar(amounts: list[Decimal], variance_threshold: float = 0.20) -> bool:
    """Check if a list of amounts are similar (within variance threshold).

    Args:
        amounts: List of transaction amounts to compare.
        variance_threshold: Maximum allowed variance as a fraction (0.20 = 20%).

    Returns:
        True if all amounts are within variance_threshold of the median.
    """
    if not amounts:
        return False

    if len(amounts) == 1:
        return True

    sorted_amounts = sorted(amounts)
    n = len(sorted_amounts)
    if n % 2 == 0:
        median = (sorted_amounts[n // 2 - 1] + sorted_amounts[n // 2]) / 2
    else:
        median = sorted_amounts[n // 2]

    if median == 0:
        return False

    for amount in amounts:
        variance = abs(amount - median) / median
        if variance > Decimal(str(variance_threshold)):
            return False

    return True
