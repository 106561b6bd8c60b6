"""Core data models for M-Pesa Reconcile.

This module defines the dataclasses shared by every stage of the import
pipeline and the review workflow. It has zero internal imports -- everything
depends on it, but it depends on nothing within the package.

Records that flow out of the parsers and matchers are frozen: later stages
never mutate them in place, they build new objects with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal


class TransactionKind:
    """String constants for the direction/type of a transaction."""

    SEND = "send"
    RECEIVE = "receive"
    BUY = "buy"
    WITHDRAW = "withdraw"
    DEPOSIT = "deposit"


ALL_KINDS = (
    TransactionKind.SEND,
    TransactionKind.RECEIVE,
    TransactionKind.BUY,
    TransactionKind.WITHDRAW,
    TransactionKind.DEPOSIT,
)


class RowStatus:
    """String constants for the review status of a :class:`ReviewRow`."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EDITED = "edited"


#: Statuses whose rows are written to the ledger on commit.
COMMITTABLE_STATUSES = frozenset({RowStatus.ACCEPTED, RowStatus.EDITED})

UNCATEGORIZED = "Uncategorized"
UNKNOWN_PAYEE = "Unknown"


def generate_row_id() -> str:
    """Return a fresh opaque identifier for a review row or ledger entry."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class TransactionCandidate:
    """A provisional transaction extracted from raw text.

    Created once per parsed input unit and never modified afterwards.

    Attributes:
        amount: Positive transaction amount.
        kind: One of the :class:`TransactionKind` constants.
        timestamp: Epoch milliseconds. Falls back to "now" when the source
            date cannot be parsed; never absent.
        reference: First 100 characters of the source text (audit trail).
        counterparty: Payee/merchant text as it appeared in the source, or
            ``None`` when the source has none.
        balance_after: Account balance reported after the transaction.
        phone_number: Mobile number found in the counterparty text.
        receipt_code: M-Pesa confirmation or receipt code, when present.
        timestamp_degraded: True if ``timestamp`` is a "now" substitute.
    """

    amount: Decimal
    kind: str
    timestamp: int
    reference: str
    counterparty: str | None = None
    balance_after: Decimal | None = None
    phone_number: str | None = None
    receipt_code: str | None = None
    timestamp_degraded: bool = False


@dataclass(frozen=True)
class LedgerLine:
    """One completed row of an M-Pesa statement."""

    receipt_code: str
    completed_at: str
    details: str
    status: str
    paid_in: Decimal
    withdrawn: Decimal
    balance: Decimal


@dataclass(frozen=True)
class CategoryMatch:
    """Result of scoring a merchant string against the category rules.

    ``category`` is ``None`` when no category scored above the baseline.
    ``matched_pattern`` and ``tokens_matched`` only explain the decision.
    """

    category: str | None
    score: float
    confidence: float
    matched_pattern: str | None = None
    tokens_matched: tuple[str, ...] = ()
    normalized_text: str = ""


@dataclass(frozen=True)
class PayeeMatch:
    """Best-guess payee for a candidate, derived from ledger history.

    Attributes:
        confidence: ``"high"``, ``"medium"`` or ``"low"``.
        suggested_name: Payee name to record.
        matched_by: ``"phone-exact"``, ``"phone-partial"``,
            ``"name-fuzzy"`` or ``"none"``.
        suggested_category: Most common category used for this payee.
        category_confidence: Share (percent) of the matched history entries
            that carried ``suggested_category``.
    """

    confidence: str
    suggested_name: str
    matched_by: str = "none"
    suggested_category: str | None = None
    category_confidence: float | None = None


@dataclass(frozen=True)
class RecurringSeries:
    """A known recurring obligation (rent, subscription, ...)."""

    id: str
    name: str
    payee: str
    amount: Decimal
    category: str = UNCATEGORIZED
    frequency: str | None = "monthly"
    last_paid: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class RecurringMatch:
    """Best-guess linkage of a candidate to a recurring series."""

    confidence: str
    name: str
    match_score: int = 0
    series_id: str | None = None
    expected_amount: Decimal | None = None
    last_paid: int | None = None
    frequency: str | None = None


@dataclass(frozen=True)
class DuplicateCheck:
    """Outcome of comparing a candidate with the existing ledger.

    ``confidence`` is ``"exact"``, ``"likely"``, ``"possible"`` or
    ``"none"``; ``entry_ids`` lists matching ledger entries, best first.
    """

    confidence: str = "none"
    entry_ids: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()

    @property
    def is_duplicate(self) -> bool:
        return self.confidence != "none"


@dataclass(frozen=True)
class LedgerEntry:
    """A committed transaction in the personal finance ledger."""

    id: str
    amount: Decimal
    payee: str
    category: str
    timestamp: int
    kind: str = TransactionKind.SEND
    reference: str = ""
    receipt_code: str | None = None
    phone_number: str | None = None
    series_id: str | None = None
    is_recurring: bool = False
    notes: str | None = None


@dataclass(frozen=True)
class Overrides:
    """User corrections for a review row. ``None`` means "not overridden"."""

    counterparty: str | None = None
    category: str | None = None
    amount: Decimal | None = None
    series_id: str | None = None


@dataclass(frozen=True)
class ReviewRow:
    """A candidate plus its suggestions and the reviewer's decision."""

    id: str
    candidate: TransactionCandidate
    category_match: CategoryMatch
    payee_match: PayeeMatch
    recurring_match: RecurringMatch
    duplicate: DuplicateCheck = field(default_factory=DuplicateCheck)
    status: str = RowStatus.PENDING
    overrides: Overrides | None = None


@dataclass(frozen=True)
class MerchantRule:
    """An extra categorizer pattern loaded from ``rules.toml``.

    Attributes:
        pattern: Literal text matched as a substring of the normalized
            merchant string.
        category: Category name the pattern scores for.
        source: ``"user"`` (hand-authored, never overwritten) or
            ``"learned"`` (written by the review learn step).
    """

    pattern: str
    category: str
    source: str = "user"


@dataclass
class StageResult:
    """Return type for every pipeline stage function.

    Each stage processes what it can and reports what it could not. The
    pipeline accumulates warnings and errors across all stages.

    Attributes:
        candidates: Candidates surviving this stage.
        warnings: Non-fatal issues, such as skipped segments.
        errors: Short excerpts of segments that could not be processed at
            all. The stage still returns whatever it could process.
        segments: Number of raw input segments the stage looked at.
    """

    candidates: list[TransactionCandidate] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    segments: int = 0


@dataclass
class ImportBatch:
    """Review rows produced from one raw input plus parse statistics.

    Attributes:
        rows: Pending review rows in input order.
        segments: Number of raw segments found in the input.
        parsed: Number of segments that parsed into a candidate.
        failed: Number of segments that could not be parsed.
        failed_samples: Short excerpts of (up to five) failed segments.
        excluded: Candidates dropped because their kind is not imported.
        warnings: Accumulated stage warnings.
    """

    rows: tuple[ReviewRow, ...] = ()
    segments: int = 0
    parsed: int = 0
    failed: int = 0
    failed_samples: list[str] = field(default_factory=list)
    excluded: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class LearnResult:
    """Counts and the updated rule list produced by the learn step."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    rules: list[MerchantRule] = field(default_factory=list)


@dataclass
class AppConfig:
    """Application configuration loaded from ``config.toml``.

    Attributes:
        sms_kinds: Transaction kinds kept when importing SMS text. Default:
            send and buy (expenses only).
        statement_kinds: Transaction kinds kept when importing statement
            text. Default: send.
        ledger_path: JSON ledger file, relative to the project root.
        owner: Ledger owner stamped on committed entries.
        auto_select_year: Pre-select the review year filter.
    """

    sms_kinds: list[str] = field(
        default_factory=lambda: [TransactionKind.SEND, TransactionKind.BUY]
    )
    statement_kinds: list[str] = field(default_factory=lambda: [TransactionKind.SEND])
    ledger_path: str = "ledger.json"
    owner: str = "me"
    auto_select_year: bool = True
