"""M-Pesa statement text parser.

Statement format (text extracted from the PDF statement)::

    Receipt No  Completion Time  Details  Transaction Status  Paid In  Withdrawn  Balance
    TL2PNBUD8H  2025-12-04 12:25:14  Customer Transfer to 0712345678 - DANIEL
                COMPLETED  0.00  6,800.00  1,045.00

A statement line may wrap over several physical lines and page breaks can
fall in the middle of the table, so page markers, repeated column headers
and the disclaimer footer are removed first and the remaining text is cut
into segments in front of every "receipt code + date" pair.

Fee lines (the "... Charge" rows M-Pesa books next to the transaction they
belong to) are dropped. Withdrawn amounts may carry a leading minus sign,
which is ignored.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from mpesa_reconcile.errors import ParseError
from mpesa_reconcile.models import LedgerLine, StageResult, TransactionCandidate, TransactionKind
from mpesa_reconcile.parsers.message import (
    REFERENCE_LENGTH,
    clean_counterparty,
    extract_phone,
    now_ms,
    parse_decimal,
)

logger = logging.getLogger(__name__)

COMPLETION_FORMAT = "%Y-%m-%d %H:%M:%S"

MIN_SEGMENT_LENGTH = 10

_RECEIPT = r"[A-Z][A-Z0-9]{7,11}"
_MONEY = r"-?[\d,]+\.\d{2}"

_PAGE_MARKER_RE = re.compile(r"Page\s+\d+\s+of\s+\d+", re.IGNORECASE)
_DISCLAIMER_RE = re.compile(r"Disclaimer:[\s\S]*?conditions\s+apply\.?", re.IGNORECASE)
_HEADER_RE = re.compile(
    r"Receipt\s+No\.?\s+Completion\s+Time\s+Details\s+(?:Transaction\s+)?Status"
    r"\s+Paid\s+In\s+Withdrawn\s+Balance",
    re.IGNORECASE,
)
_SEGMENT_SPLIT_RE = re.compile(r"(?<![A-Z0-9])(?=" + _RECEIPT + r"\s+\d{4}-\d{2}-\d{2})")
_SEGMENT_START_RE = re.compile(_RECEIPT + r"\s+\d{4}-\d{2}-\d{2}")
_LINE_RE = re.compile(
    r"^(?P<receipt>" + _RECEIPT + r")"
    r"\s+(?P<completed>\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})"
    r"\s+(?P<details>.+?)"
    r"\s+(?P<status>COMPLETED|FAILED|PENDING)"
    r"\s+(?P<paid_in>" + _MONEY + r")"
    r"\s+(?P<withdrawn>" + _MONEY + r")"
    r"\s+(?P<balance>" + _MONEY + r")\s*$",
    re.IGNORECASE,
)
_FEE_RE = re.compile(
    r"(?:Charge|of Funds Charge|Pay Bill Charge|Pay Merchant Charge|Withdrawal Charge)",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class StatementScan:
    """Everything :func:`scan` found in a statement.

    Attributes:
        lines: Parsed transaction lines in statement order.
        unmatched: Segments that start like a transaction line but do not fit
            the line grammar.
        fees: Number of charge lines dropped.
    """

    lines: list[LedgerLine] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    fees: int = 0


def scan(text: str) -> StatementScan:
    """Split statement text into transaction lines.

    Args:
        text: Plain text of an M-Pesa statement.

    Returns:
        A :class:`StatementScan`. Preamble text before the first receipt and
        fragments shorter than ten characters are ignored.
    """
    result = StatementScan()
    if not text or not text.strip():
        return result

    cleaned = _PAGE_MARKER_RE.sub(" ", text)
    cleaned = _DISCLAIMER_RE.sub(" ", cleaned)
    cleaned = _HEADER_RE.sub(" ", cleaned)

    for raw_segment in _SEGMENT_SPLIT_RE.split(cleaned):
        segment = _WHITESPACE_RE.sub(" ", raw_segment).strip()
        if len(segment) < MIN_SEGMENT_LENGTH:
            continue
        if not _SEGMENT_START_RE.match(segment):
            logger.debug("Ignoring statement preamble %r", segment[:50])
            continue

        match = _LINE_RE.match(segment)
        if match is None:
            logger.debug("Statement segment did not match line grammar: %r", segment[:50])
            result.unmatched.append(segment)
            continue

        details = match.group("details").strip()
        if _FEE_RE.search(details):
            result.fees += 1
            continue

        result.lines.append(
            LedgerLine(
                receipt_code=match.group("receipt").upper(),
                completed_at=_WHITESPACE_RE.sub(" ", match.group("completed")),
                details=details,
                status=match.group("status").upper(),
                paid_in=_money(match.group("paid_in")),
                withdrawn=_money(match.group("withdrawn")),
                balance=_money(match.group("balance")),
            )
        )

    logger.info(
        "Statement scan: %d lines, %d unmatched, %d fees",
        len(result.lines),
        len(result.unmatched),
        result.fees,
    )
    return result


def parse(text: str) -> list[LedgerLine]:
    """Parse statement text into :class:`LedgerLine` records, fees excluded."""
    return scan(text).lines


def counterparty_from_details(details: str) -> tuple[str | None, str | None]:
    """Split statement details into a counterparty name and phone number.

    ``"Customer Transfer to 0712345678 - JOHN DOE"`` becomes
    ``("JOHN DOE", "0712345678")``. Details without a ``" - "`` separator are
    returned whole as the name.
    """
    head, sep, tail = details.partition(" - ")
    if not sep:
        return clean_counterparty(details), extract_phone(details)
    name = clean_counterparty(tail) or clean_counterparty(head)
    return name, extract_phone(head) or extract_phone(tail)


def to_candidate(line: LedgerLine) -> TransactionCandidate:
    """Turn a statement line into a transaction candidate.

    Raises:
        ParseError: If the line has neither a withdrawn nor a paid-in amount.
    """
    if line.withdrawn > 0:
        kind, amount = TransactionKind.SEND, line.withdrawn
    elif line.paid_in > 0:
        kind, amount = TransactionKind.RECEIVE, line.paid_in
    else:
        raise ParseError(f"statement line {line.receipt_code} has no amount")

    name, phone = counterparty_from_details(line.details)
    completed = _completion_time(line.completed_at)
    if completed is None:
        logger.warning(
            "Could not parse completion time %r for %s; using current time",
            line.completed_at,
            line.receipt_code,
        )
        timestamp = now_ms()
    else:
        timestamp = int(completed.timestamp() * 1000)

    return TransactionCandidate(
        amount=amount,
        kind=kind,
        timestamp=timestamp,
        reference=f"{line.receipt_code} {line.details}"[:REFERENCE_LENGTH],
        counterparty=name,
        balance_after=line.balance,
        phone_number=phone,
        receipt_code=line.receipt_code,
        timestamp_degraded=completed is None,
    )


def to_messages(lines: list[LedgerLine]) -> list[str]:
    """Render statement lines as notification messages.

    Withdrawals use the "CODE Confirmed. Ksh X sent to NAME" form and
    credits the "You have received" form, so the message parser reads them
    back with the same amount and kind. Lines with no amount are skipped.
    """
    messages = []
    for line in lines:
        name, _ = counterparty_from_details(line.details)
        name = name or line.details
        completed = _completion_time(line.completed_at) or datetime.now()
        when = _narrative_when(completed)
        balance = f"New M-PESA balance is Ksh{line.balance:,.2f}."

        if line.withdrawn > 0:
            messages.append(
                f"{line.receipt_code} Confirmed. Ksh{line.withdrawn:,.2f} sent to {name} "
                f"on {when}. {balance}"
            )
        elif line.paid_in > 0:
            messages.append(
                f"{line.receipt_code} Confirmed.You have received Ksh{line.paid_in:,.2f} "
                f"from {name} on {when}. {balance}"
            )
    return messages


def _money(raw: str) -> Decimal:
    value = parse_decimal(raw.lstrip("-"))
    return value if value is not None else Decimal("0")


def _completion_time(raw: str) -> datetime | None:
    try:
        return datetime.strptime(raw, COMPLETION_FORMAT)
    except ValueError:
        return None


def _narrative_when(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    period = "PM" if moment.hour >= 12 else "AM"
    return (
        f"{moment.day}/{moment.month}/{moment.year % 100:02d} "
        f"at {hour}:{moment.minute:02d} {period}"
    )


def read(text: str) -> StageResult:
    """Parse statement text into candidates.

    Only ``COMPLETED`` lines become candidates; failed and pending lines are
    reported as warnings. Segments that do not fit the line grammar are
    reported in ``errors``.
    """
    scanned = scan(text)
    result = StageResult(
        segments=len(scanned.lines) + len(scanned.unmatched),
        errors=[segment[:50] for segment in scanned.unmatched],
    )
    if scanned.fees:
        result.warnings.append(f"skipped {scanned.fees} charge line(s)")

    for line in scanned.lines:
        if line.status != "COMPLETED":
            result.warnings.append(f"{line.receipt_code}: skipped {line.status.lower()} transaction")
            continue
        try:
            result.candidates.append(to_candidate(line))
        except ParseError as exc:
            logger.info("Skipping statement line: %s", exc.reason)
            result.errors.append(f"{line.receipt_code} {line.details}"[:50])
    return result
