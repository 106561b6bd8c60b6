"""CSV export writer and summary printers.

- :func:`export` sorts ledger entries by time and writes the fixed column
  schema to a CSV file.
- :func:`print_summary` prints the outcome of an import: parse counts,
  review decisions and spending by category.
- :func:`print_analysis` prints a spending analysis.
"""

from __future__ import annotations

import csv
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from mpesa_reconcile.analysis import SpendingAnalysis
from mpesa_reconcile.models import ImportBatch, LedgerEntry
from mpesa_reconcile.review import ReviewSummary

# Fixed output column order.
CSV_COLUMNS = [
    "id",
    "date",
    "month",
    "payee",
    "category",
    "amount",
    "kind",
    "receipt_code",
    "phone_number",
    "is_recurring",
    "series_id",
    "reference",
]


def _when(timestamp: int, fmt: str = "%Y-%m-%d %H:%M") -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime(fmt)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def export(
    entries: list[LedgerEntry],
    output_dir: str | Path,
    name: str = "ledger",
) -> Path:
    """Write ledger entries to ``output_dir/<name>.csv``.

    Entries are sorted by timestamp, then payee, then amount. An existing
    file is overwritten.

    Args:
        entries: Ledger entries, e.g. from ``JsonLedgerStore.load_entries()``.
        output_dir: Directory to write the CSV file into.
        name: File name without extension.

    Returns:
        The :class:`~pathlib.Path` to the written CSV file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{name}.csv"

    ordered = sorted(entries, key=lambda e: (e.timestamp, e.payee, e.amount))

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for entry in ordered:
            writer.writerow(
                {
                    "id": entry.id,
                    "date": _when(entry.timestamp),
                    "month": _when(entry.timestamp, "%Y-%m"),
                    "payee": entry.payee,
                    "category": entry.category,
                    "amount": str(entry.amount),
                    "kind": entry.kind,
                    "receipt_code": entry.receipt_code or "",
                    "phone_number": entry.phone_number or "",
                    "is_recurring": str(entry.is_recurring),
                    "series_id": entry.series_id or "",
                    "reference": entry.reference,
                }
            )

    return output_path


# ---------------------------------------------------------------------------
# Summary printers
# ---------------------------------------------------------------------------


def print_summary(
    batch: ImportBatch,
    review: ReviewSummary,
    committed: list[LedgerEntry],
) -> None:
    """Print a human-readable import summary to stdout.

    Args:
        batch: The batch that was reviewed.
        review: Review counts over the whole batch.
        committed: Entries written to the ledger.
    """
    category_totals: defaultdict[str, Decimal] = defaultdict(Decimal)
    for entry in committed:
        category_totals[entry.category] += entry.amount
    sorted_categories = sorted(category_totals.items(), key=lambda pair: -pair[1])

    print()
    print("== Import Summary ==")
    print(f"Messages: {batch.segments} found, {batch.parsed} parsed, {batch.failed} failed")
    if batch.excluded:
        print(f"Skipped:  {batch.excluded} (kind not imported)")
    print(
        f"Review:   {review.accepted} accepted, {review.edited} edited, "
        f"{review.rejected} rejected, {review.pending} left pending"
    )
    print(f"Saved:    {len(committed)} entries (Ksh {review.committable_amount:,.2f})")

    if sorted_categories:
        print()
        print("Spending by category:")
        for cat, total in sorted_categories:
            print(f"  {cat + ':':<25} Ksh {total:,.2f}")

    if batch.failed_samples:
        print()
        print(f"Could not parse: {batch.failed}")
        for sample in batch.failed_samples:
            print(f"  - {sample}")

    if batch.warnings:
        print()
        print(f"Warnings: {len(batch.warnings)}")
        for w in batch.warnings:
            print(f"  - {w}")

    print()


def print_analysis(analysis: SpendingAnalysis, top: int = 10) -> None:
    """Print a spending analysis to stdout.

    Args:
        analysis: Result of ``analysis.analyze_messages`` or
            ``analysis.analyze_statement``.
        top: Number of most recent transactions to list.
    """
    print()
    print("== Spending Analysis ==")
    if analysis.transaction_count == 0:
        print("No transactions found.")
        print()
        return

    print(
        f"Period:   {_when(analysis.start, '%Y-%m-%d')} to "
        f"{_when(analysis.end, '%Y-%m-%d')} ({analysis.days} days)"
    )
    print(f"Spent:    Ksh {analysis.total_spent:,.2f}")
    print(f"Received: Ksh {analysis.total_received:,.2f}")
    print(f"Net:      Ksh {analysis.net_flow:,.2f}")
    print(f"Count:    {analysis.transaction_count} transactions")
    print(f"Per day:  Ksh {analysis.avg_daily_spend:,.2f}")
    print(f"Average:  Ksh {analysis.avg_transaction_amount:,.2f} per payment")
    print(f"Top:      {analysis.top_category} (Ksh {analysis.top_spending:,.2f})")

    if analysis.categories:
        print()
        print("Spending by category:")
        for cat in analysis.categories:
            print(
                f"  {cat.name + ':':<25} Ksh {cat.amount:>12,.2f}  "
                f"{cat.percentage:5.1f}%  ({cat.count} txns)"
            )

    print()
    print("Recent transactions:")
    for txn in analysis.transactions[:top]:
        sign = "-" if txn.is_spend else "+"
        party = txn.counterparty or "(unknown)"
        print(
            f"  {_when(txn.timestamp)}  {sign}Ksh {txn.amount:>10,.2f}  "
            f"{party[:30]:<30}  {txn.category}"
        )
    print()
