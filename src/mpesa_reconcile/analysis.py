"""Spending summary over a whole SMS dump or statement.

Both inputs go through the message parser: statement lines are first
rendered as notification messages with
:func:`mpesa_reconcile.parsers.statement.to_messages`, so categorization
works the same way for both.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from decimal import Decimal

from mpesa_reconcile.categorizer import categorize
from mpesa_reconcile.errors import ParseError
from mpesa_reconcile.models import TransactionCandidate, TransactionKind
from mpesa_reconcile.parsers import message, statement

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000

INCOMING_KINDS = frozenset({TransactionKind.RECEIVE, TransactionKind.DEPOSIT})

_KIND_CATEGORIES = {
    TransactionKind.WITHDRAW: "Withdraw",
    TransactionKind.DEPOSIT: "Deposit",
    TransactionKind.RECEIVE: "Income",
}


@dataclass(frozen=True)
class AnalyzedTransaction:
    amount: Decimal
    kind: str
    category: str
    timestamp: int
    counterparty: str | None
    description: str

    @property
    def is_spend(self) -> bool:
        return self.kind not in INCOMING_KINDS


@dataclass(frozen=True)
class SpendingCategory:
    name: str
    amount: Decimal
    percentage: float
    count: int


@dataclass
class SpendingAnalysis:
    """Aggregates over the analysed transactions.

    ``categories`` only covers spending, largest first. ``transactions`` is
    sorted newest first. ``days`` is the covered range rounded up, at least
    one (zero when there are no transactions).
    """

    total_spent: Decimal = Decimal("0")
    total_received: Decimal = Decimal("0")
    net_flow: Decimal = Decimal("0")
    transaction_count: int = 0
    top_category: str = "None"
    top_spending: Decimal = Decimal("0")
    avg_daily_spend: Decimal = Decimal("0")
    avg_transaction_amount: Decimal = Decimal("0")
    categories: list[SpendingCategory] = field(default_factory=list)
    transactions: list[AnalyzedTransaction] = field(default_factory=list)
    start: int = 0
    end: int = 0
    days: int = 0


def spending_category(counterparty: str | None, kind: str) -> str:
    """Spending category for the summary view.

    Withdrawals, deposits and incoming money get fixed labels. Everything
    else uses the merchant categorizer, then simple name heuristics.
    """
    if kind in _KIND_CATEGORIES:
        return _KIND_CATEGORIES[kind]
    if not counterparty:
        return "Other"

    match = categorize(counterparty)
    if match.category is not None:
        return match.category

    lowered = counterparty.lower()
    if "pay" in lowered or "bill" in lowered:
        return "Bills"
    if "send" in lowered or "transfer" in lowered or lowered.strip().isdigit():
        return "Transfers"
    return "Other"


def analyze_messages(text: str) -> SpendingAnalysis:
    """Summarize a blank-line separated dump of M-Pesa messages."""
    return analyze_candidates(message.read(text).candidates)


def analyze_statement(text: str) -> SpendingAnalysis:
    """Summarize M-Pesa statement text. Failed and pending lines are ignored."""
    completed = [line for line in statement.parse(text) if line.status == "COMPLETED"]
    candidates = []
    for rendered in statement.to_messages(completed):
        try:
            candidates.append(message.parse(rendered))
        except ParseError as exc:
            logger.info("Skipping statement line: %s", exc.reason)
    return analyze_candidates(candidates)


def analyze_candidates(candidates: list[TransactionCandidate]) -> SpendingAnalysis:
    """Aggregate already parsed candidates."""
    transactions = [
        AnalyzedTransaction(
            amount=c.amount,
            kind=c.kind,
            category=spending_category(c.counterparty, c.kind),
            timestamp=c.timestamp,
            counterparty=c.counterparty,
            description=c.reference,
        )
        for c in candidates
    ]
    if not transactions:
        now = int(time.time() * 1000)
        return SpendingAnalysis(start=now, end=now)

    spending = [t for t in transactions if t.is_spend]
    total_spent = sum((t.amount for t in spending), Decimal("0"))
    total_received = sum((t.amount for t in transactions if not t.is_spend), Decimal("0"))

    start = min(t.timestamp for t in transactions)
    end = max(t.timestamp for t in transactions)
    days = max(1, math.ceil((end - start) / MS_PER_DAY))

    totals: dict[str, list] = {}
    for t in spending:
        bucket = totals.setdefault(t.category, [Decimal("0"), 0])
        bucket[0] += t.amount
        bucket[1] += 1

    categories = sorted(
        (
            SpendingCategory(
                name=name,
                amount=amount,
                percentage=float(amount / total_spent * 100) if total_spent > 0 else 0.0,
                count=count,
            )
            for name, (amount, count) in totals.items()
        ),
        key=lambda c: c.amount,
        reverse=True,
    )

    return SpendingAnalysis(
        total_spent=total_spent,
        total_received=total_received,
        net_flow=total_received - total_spent,
        transaction_count=len(transactions),
        top_category=categories[0].name if categories else "None",
        top_spending=categories[0].amount if categories else Decimal("0"),
        avg_daily_spend=total_spent / days,
        avg_transaction_amount=total_spent / len(spending) if spending else Decimal("0"),
        categories=categories,
        transactions=sorted(transactions, key=lambda t: t.timestamp, reverse=True),
        start=start,
        end=end,
        days=days,
    )
