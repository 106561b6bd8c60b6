"""Import orchestration for M-Pesa Reconcile.

Composes the stages that turn raw text into review rows: parse, filter
kinds, categorize, match payees, match recurring series, detect
duplicates, and build rows.  Parsing and filtering return a
:class:`~mpesa_reconcile.models.StageResult`; the matcher stages return one
result per candidate.  Warnings from every stage are accumulated into the
final :class:`~mpesa_reconcile.models.ImportBatch`.

Nothing here touches storage except :func:`commit`, which hands the resolved
entries to a :class:`~mpesa_reconcile.store.LedgerStore` in one call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from mpesa_reconcile.categorizer import CATEGORY_RULES, CategoryRule, categorize
from mpesa_reconcile.duplicates import detect_duplicates
from mpesa_reconcile.errors import (
    CommitError,
    MatcherContractError,
    NothingToImportError,
    ValidationError,
)
from mpesa_reconcile.models import (
    COMMITTABLE_STATUSES,
    UNCATEGORIZED,
    UNKNOWN_PAYEE,
    AppConfig,
    ImportBatch,
    LedgerEntry,
    Overrides,
    PayeeMatch,
    RecurringSeries,
    ReviewRow,
    StageResult,
    TransactionCandidate,
    TransactionKind,
    generate_row_id,
)
from mpesa_reconcile.parsers import get_parser
from mpesa_reconcile.payees import batch_match_payees
from mpesa_reconcile.recurring import batch_match_recurring

logger = logging.getLogger(__name__)

MAX_FAILED_SAMPLES = 5

KIND_LABELS = {
    TransactionKind.SEND: "sent",
    TransactionKind.BUY: "buy goods",
    TransactionKind.RECEIVE: "received",
    TransactionKind.WITHDRAW: "withdraw",
    TransactionKind.DEPOSIT: "deposit",
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_review_batch(
    raw_text: str,
    source: str = "sms",
    history: Iterable[LedgerEntry] = (),
    series: Iterable[RecurringSeries] = (),
    config: AppConfig | None = None,
    now: int | None = None,
    rules: Sequence[CategoryRule] = CATEGORY_RULES,
) -> ImportBatch:
    """Turn raw SMS or statement text into a batch of pending review rows.

    Stages executed in order:

    1. **Parse** -- split the input and parse every segment. Segments that
       fail are counted and sampled, never fatal.
    2. **Filter kinds** -- keep only the transaction kinds configured for
       *source*.
    3. **Categorize** -- score each counterparty against *rules*.
    4. **Match payees** -- suggest payee names and categories from
       *history*.
    5. **Match recurring** -- link candidates to known recurring *series*.
    6. **Detect duplicates** -- compare candidates with *history*.
    7. **Build rows** -- one pending row with a fresh id per candidate.

    Args:
        raw_text: Pasted SMS messages (``source="sms"``) or statement text
            (``source="statement"``).
        source: Parser name, see :data:`mpesa_reconcile.parsers.PARSERS`.
        history: Existing ledger entries.
        series: Known recurring series.
        config: Application configuration; defaults apply when omitted.
        now: Epoch milliseconds used for due-date scoring.
        rules: Category rules, e.g. from ``categorizer.build_rules``.

    Returns:
        An :class:`ImportBatch` with at least one row.

    Raises:
        NothingToImportError: If the input is empty or nothing importable
            was found in it.
        ValidationError: If *source* is not a known parser.
    """
    if not raw_text or not raw_text.strip():
        raise NothingToImportError("Nothing to import: the input is empty.")

    if config is None:
        config = AppConfig()
    history = list(history)
    series = list(series)
    all_warnings: list[str] = []

    # -- Stage 1: Parse -------------------------------------------------------
    parse_result = _parse_stage(raw_text, source)
    all_warnings.extend(parse_result.warnings)
    parsed = len(parse_result.candidates)
    failed = len(parse_result.errors)

    # -- Stage 2: Filter kinds ------------------------------------------------
    kinds = config.statement_kinds if source == "statement" else config.sms_kinds
    filter_result = _filter_kinds(parse_result.candidates, kinds)
    all_warnings.extend(filter_result.warnings)
    candidates = filter_result.candidates
    excluded = parsed - len(candidates)

    if not candidates:
        raise NothingToImportError(
            _nothing_to_import_message(parse_result.segments, parsed, failed, kinds),
            parsed=parsed,
            failed=failed,
        )

    # -- Stage 3: Categorize --------------------------------------------------
    category_matches = [categorize(c.counterparty, rules=rules) for c in candidates]

    # -- Stage 4: Match payees ------------------------------------------------
    payee_matches = batch_match_payees(candidates, history)
    _check_contract("payee matcher", payee_matches, candidates)

    # -- Stage 5: Match recurring ---------------------------------------------
    items = [
        (candidate, payee.suggested_name, payee.suggested_category or category.category)
        for candidate, payee, category in zip(candidates, payee_matches, category_matches)
    ]
    recurring_matches = batch_match_recurring(items, series, now=now)
    _check_contract("recurring matcher", recurring_matches, candidates)

    # -- Stage 6: Detect duplicates -------------------------------------------
    duplicates = [detect_duplicates(c, history) for c in candidates]
    flagged = sum(1 for d in duplicates if d.is_duplicate)
    if flagged:
        all_warnings.append(f"{flagged} transaction(s) may already be in the ledger")

    # -- Stage 7: Build rows --------------------------------------------------
    rows = tuple(
        ReviewRow(
            id=generate_row_id(),
            candidate=candidate,
            category_match=category,
            payee_match=payee,
            recurring_match=recurring,
            duplicate=duplicate,
        )
        for candidate, category, payee, recurring, duplicate in zip(
            candidates, category_matches, payee_matches, recurring_matches, duplicates
        )
    )

    logger.info(
        "Built review batch: %d row(s) from %d segment(s), %d failed, %d excluded",
        len(rows),
        parse_result.segments,
        failed,
        excluded,
    )

    return ImportBatch(
        rows=rows,
        segments=parse_result.segments,
        parsed=parsed,
        failed=failed,
        failed_samples=parse_result.errors[:MAX_FAILED_SAMPLES],
        excluded=excluded,
        warnings=all_warnings,
    )


def resolve_entry(row: ReviewRow) -> LedgerEntry:
    """Resolve a reviewed row into the ledger entry that will be written.

    Every field is taken from the first source that has a value: the
    reviewer's override, then the matcher suggestion, then the parsed value.
    """
    overrides = row.overrides or Overrides()
    candidate = row.candidate

    payee = (
        overrides.counterparty
        or _suggested_name(row.payee_match)
        or candidate.counterparty
        or UNKNOWN_PAYEE
    )
    category = (
        overrides.category
        or row.payee_match.suggested_category
        or row.category_match.category
        or UNCATEGORIZED
    )
    series_id = overrides.series_id or row.recurring_match.series_id

    return LedgerEntry(
        id=row.id,
        amount=overrides.amount or candidate.amount,
        payee=payee,
        category=category,
        timestamp=candidate.timestamp,
        kind=candidate.kind,
        reference=candidate.reference,
        receipt_code=candidate.receipt_code,
        phone_number=candidate.phone_number,
        series_id=series_id,
        is_recurring=series_id is not None,
        notes=f"Phone: {candidate.phone_number}" if candidate.phone_number else None,
    )


def commit(rows: Iterable[ReviewRow], store) -> list[LedgerEntry]:
    """Write accepted and edited rows to *store* in a single call.

    Args:
        rows: Review rows; pending and rejected rows are ignored.
        store: Object with a ``save_entries(entries)`` method that either
            stores every entry or raises.

    Returns:
        The entries written, in row order. Empty (and *store* untouched)
        when no row is committable.

    Raises:
        CommitError: If the store fails. The rows are left as they were so
            the caller can retry.
    """
    entries = [resolve_entry(row) for row in rows if row.status in COMMITTABLE_STATUSES]
    if not entries:
        return []

    try:
        store.save_entries(entries)
    except Exception as exc:
        logger.error("Commit of %d entries failed: %s", len(entries), exc)
        raise CommitError(str(exc) or exc.__class__.__name__) from exc

    logger.info("Committed %d entries", len(entries))
    return entries


# ---------------------------------------------------------------------------
# Stage implementations
# ---------------------------------------------------------------------------


def _parse_stage(raw_text: str, source: str) -> StageResult:
    """Stage 1: run the registered parser for *source*."""
    try:
        parser_fn = get_parser(source)
    except KeyError:
        raise ValidationError(f"Unknown source {source!r}") from None

    result = parser_fn(raw_text)
    if result.errors:
        logger.warning(
            "%d of %d segment(s) could not be parsed", len(result.errors), result.segments
        )
    return result


def _filter_kinds(candidates: list[TransactionCandidate], kinds: list[str]) -> StageResult:
    """Stage 2: keep only candidates whose kind is imported."""
    allowed = set(kinds)
    kept = [c for c in candidates if c.kind in allowed]

    warnings: list[str] = []
    skipped = len(candidates) - len(kept)
    if skipped > 0:
        warnings.append(f"Skipped {skipped} transaction(s) of kinds that are not imported")

    return StageResult(candidates=kept, warnings=warnings)


def _check_contract(name: str, results: list, candidates: list[TransactionCandidate]) -> None:
    if len(results) != len(candidates):
        raise MatcherContractError(
            f"{name} returned {len(results)} result(s) for {len(candidates)} candidate(s)"
        )


def _suggested_name(match: PayeeMatch) -> str | None:
    if match.suggested_name and match.suggested_name != UNKNOWN_PAYEE:
        return match.suggested_name
    return None


def _nothing_to_import_message(segments: int, parsed: int, failed: int, kinds: list[str]) -> str:
    if parsed == 0 and failed > 0:
        return (
            f"No valid M-Pesa expenses found. {segments} message(s) detected but "
            "could not be parsed. Try copying the text exactly as shown in your "
            "Messages app."
        )
    labels = " and ".join(f"'{KIND_LABELS.get(k, k)}'" for k in kinds) or "no"
    return (
        f"No valid M-Pesa expenses found. Only {labels} transactions are imported; "
        f"{parsed} other transaction(s) were skipped."
    )
