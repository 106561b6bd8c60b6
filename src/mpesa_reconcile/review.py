"""Reconciliation review state.

A :class:`ReviewState` holds one batch of review rows, the current
selection and the year/month filter. Every operation is a pure function
that returns a new state; nothing is mutated and nothing is written until
the committable rows are handed to :func:`mpesa_reconcile.pipeline.commit`.

Row status only moves forward::

    pending -> accepted | rejected | edited

Single-row actions on a row that is no longer pending raise
:class:`~mpesa_reconcile.errors.InvalidTransitionError`; bulk actions skip
such rows. Only pending rows that pass the current filter can be selected.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from mpesa_reconcile.errors import InvalidTransitionError, ValidationError
from mpesa_reconcile.models import (
    COMMITTABLE_STATUSES,
    Overrides,
    ReviewRow,
    RowStatus,
)


@dataclass(frozen=True)
class ReviewState:
    """One review session.

    Attributes:
        rows: All rows of the batch, in input order.
        selection: Ids of selected rows (always visible and pending).
        year: Year filter, or ``None`` for all years.
        month: Month filter (1-12), only meaningful with a year.
    """

    rows: tuple[ReviewRow, ...] = ()
    selection: frozenset[str] = frozenset()
    year: int | None = None
    month: int | None = None


@dataclass(frozen=True)
class ReviewSummary:
    """Counts by status plus the total amount that would be committed."""

    total: int = 0
    pending: int = 0
    accepted: int = 0
    rejected: int = 0
    edited: int = 0
    committable_amount: Decimal = field(default_factory=lambda: Decimal("0"))


@dataclass(frozen=True)
class ReviewCounts:
    """Summary of the whole batch and of the filtered view, side by side."""

    overall: ReviewSummary
    visible: ReviewSummary


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _moment(row: ReviewRow) -> datetime:
    return datetime.fromtimestamp(row.candidate.timestamp / 1000)


def available_years(rows: Iterable[ReviewRow]) -> list[int]:
    """Distinct years of the rows, ascending."""
    return sorted({_moment(row).year for row in rows})


def available_months(rows: Iterable[ReviewRow], year: int) -> list[int]:
    """Distinct months (1-12) of the rows that fall in *year*, ascending."""
    return sorted({m.month for m in map(_moment, rows) if m.year == year})


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def start_review(
    rows: Iterable[ReviewRow],
    today: date | None = None,
    auto_select_year: bool = True,
) -> ReviewState:
    """Open a review session over *rows*.

    With *auto_select_year* the year filter starts on the only year present,
    or on the current year if the rows span several years including it.

    Raises:
        ValidationError: If two rows share an id.
    """
    rows = tuple(rows)
    ids = [row.id for row in rows]
    if len(set(ids)) != len(ids):
        raise ValidationError("review batch contains duplicate row ids")

    year = None
    if auto_select_year:
        years = available_years(rows)
        current = (today or date.today()).year
        if len(years) == 1:
            year = years[0]
        elif current in years:
            year = current
    return ReviewState(rows=rows, year=year)


def discard(state: ReviewState) -> ReviewState:
    """Cancel the session; every row is dropped."""
    return ReviewState()


def visible_rows(state: ReviewState) -> tuple[ReviewRow, ...]:
    """Rows that pass the year/month filter, in batch order."""
    if state.year is None:
        return state.rows
    visible = []
    for row in state.rows:
        moment = _moment(row)
        if moment.year != state.year:
            continue
        if state.month is not None and moment.month != state.month:
            continue
        visible.append(row)
    return tuple(visible)


def committable_rows(state: ReviewState) -> tuple[ReviewRow, ...]:
    """Accepted and edited rows of the whole batch, regardless of filter."""
    return tuple(row for row in state.rows if row.status in COMMITTABLE_STATUSES)


def _find(state: ReviewState, row_id: str) -> int:
    for index, row in enumerate(state.rows):
        if row.id == row_id:
            return index
    raise KeyError(row_id)


def _replace_row(state: ReviewState, index: int, row: ReviewRow) -> ReviewState:
    rows = state.rows[:index] + (row,) + state.rows[index + 1 :]
    return dataclasses.replace(state, rows=rows, selection=state.selection - {row.id})


def _transition(
    state: ReviewState, row_id: str, status: str, overrides: Overrides | None = None
) -> ReviewState:
    index = _find(state, row_id)
    row = state.rows[index]
    if row.status != RowStatus.PENDING:
        raise InvalidTransitionError(f"row {row_id} is already {row.status}")
    changes: dict = {"status": status}
    if overrides is not None:
        changes["overrides"] = overrides
    return _replace_row(state, index, dataclasses.replace(row, **changes))


# ---------------------------------------------------------------------------
# Single-row actions
# ---------------------------------------------------------------------------


def accept(state: ReviewState, row_id: str) -> ReviewState:
    """Accept one pending row.

    Accepting an edited row leaves it as it is; it stays committable with
    its overrides.
    """
    if state.rows[_find(state, row_id)].status == RowStatus.EDITED:
        return state
    return _transition(state, row_id, RowStatus.ACCEPTED)


def reject(state: ReviewState, row_id: str) -> ReviewState:
    """Reject one pending row. Rejected rows are never committed."""
    return _transition(state, row_id, RowStatus.REJECTED)


def edit(state: ReviewState, row_id: str, overrides: Overrides) -> ReviewState:
    """Record reviewer corrections for a pending row and mark it edited.

    Raises:
        ValidationError: If the amount override is not positive.
        InvalidTransitionError: If the row is no longer pending.
        KeyError: If no row has *row_id*.
    """
    if overrides.amount is not None and overrides.amount <= 0:
        raise ValidationError("amount must be greater than zero")
    return _transition(state, row_id, RowStatus.EDITED, overrides)


# ---------------------------------------------------------------------------
# Bulk actions
# ---------------------------------------------------------------------------


def _bulk(state: ReviewState, row_ids: Iterable[str], status: str) -> ReviewState:
    targets = set(row_ids)
    rows = tuple(
        dataclasses.replace(row, status=status)
        if row.id in targets and row.status == RowStatus.PENDING
        else row
        for row in state.rows
    )
    return dataclasses.replace(state, rows=rows, selection=frozenset())


def accept_many(state: ReviewState, row_ids: Iterable[str]) -> ReviewState:
    """Accept every pending row in *row_ids* and clear the selection."""
    return _bulk(state, row_ids, RowStatus.ACCEPTED)


def reject_many(state: ReviewState, row_ids: Iterable[str]) -> ReviewState:
    """Reject every pending row in *row_ids* and clear the selection."""
    return _bulk(state, row_ids, RowStatus.REJECTED)


def accept_selected(state: ReviewState) -> ReviewState:
    return accept_many(state, state.selection)


def reject_selected(state: ReviewState) -> ReviewState:
    return reject_many(state, state.selection)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _selectable(state: ReviewState) -> frozenset[str]:
    return frozenset(row.id for row in visible_rows(state) if row.status == RowStatus.PENDING)


def toggle_selection(state: ReviewState, row_id: str) -> ReviewState:
    """Select or deselect one row. Rows that are hidden or not pending are ignored.

    Raises:
        KeyError: If no row has *row_id*.
    """
    _find(state, row_id)
    if row_id in state.selection:
        return dataclasses.replace(state, selection=state.selection - {row_id})
    if row_id not in _selectable(state):
        return state
    return dataclasses.replace(state, selection=state.selection | {row_id})


def toggle_all(state: ReviewState) -> ReviewState:
    """Select every visible pending row, or clear them all if already selected."""
    selectable = _selectable(state)
    if selectable and selectable <= state.selection:
        return dataclasses.replace(state, selection=frozenset())
    return dataclasses.replace(state, selection=selectable)


def clear_selection(state: ReviewState) -> ReviewState:
    return dataclasses.replace(state, selection=frozenset())


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def set_year(state: ReviewState, year: int | None) -> ReviewState:
    """Filter by *year* (``None`` shows everything). Resets the month filter."""
    filtered = dataclasses.replace(state, year=year, month=None)
    return dataclasses.replace(filtered, selection=state.selection & _selectable(filtered))


def set_month(state: ReviewState, month: int | None) -> ReviewState:
    """Filter by *month* within the selected year (``None`` shows the whole year).

    Raises:
        ValidationError: If no year is selected or *month* is not 1-12.
    """
    if month is not None:
        if state.year is None:
            raise ValidationError("select a year before filtering by month")
        if not 1 <= month <= 12:
            raise ValidationError(f"invalid month {month}")
    filtered = dataclasses.replace(state, month=month)
    return dataclasses.replace(filtered, selection=state.selection & _selectable(filtered))


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def summarize(rows: Iterable[ReviewRow]) -> ReviewSummary:
    """Count rows by status and total the amount of committable rows."""
    counts = {
        RowStatus.PENDING: 0,
        RowStatus.ACCEPTED: 0,
        RowStatus.REJECTED: 0,
        RowStatus.EDITED: 0,
    }
    total = 0
    amount = Decimal("0")
    for row in rows:
        total += 1
        counts[row.status] += 1
        if row.status in COMMITTABLE_STATUSES:
            override = row.overrides.amount if row.overrides else None
            amount += override or row.candidate.amount
    return ReviewSummary(
        total=total,
        pending=counts[RowStatus.PENDING],
        accepted=counts[RowStatus.ACCEPTED],
        rejected=counts[RowStatus.REJECTED],
        edited=counts[RowStatus.EDITED],
        committable_amount=amount,
    )


def summary(state: ReviewState) -> ReviewCounts:
    """Summaries of the full batch and of the filtered view."""
    return ReviewCounts(overall=summarize(state.rows), visible=summarize(visible_rows(state)))
