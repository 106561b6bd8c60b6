"""M-Pesa notification message parser.

Each supported message dialect is a self-contained :class:`Grammar`. The
grammars are tried in order against the trimmed message and the first one
that matches with a valid amount wins::

    sent              You sent Ksh500.00 to JOHN DOE on 15/01/24 at 10:30 AM.
                      New M-PESA balance is Ksh1,000.00
    confirmed         TL2PNBUD8H Confirmed. Ksh6,800.00 sent to DANIEL 0712345678
                      on 4/12/25 at 12:25 PM New M-PESA balance is Ksh1,045.00.
    savings_transfer  TL3X0YZ8AB Confirmed. Ksh2,000.00 transferred from M-Shwari
                      account on 4/12/25 at 9:00 AM. M-Shwari balance is
                      Ksh0.00 . M-PESA balance is Ksh3,000.00
    received          TL4ABCDE12 Confirmed.You have received Ksh1,000.00 from
                      JANE DOE 0722000000 on 4/12/25 at 2:00 PM New M-PESA
                      balance is Ksh1,500.00
    bought            You bought goods worth Ksh500.00 from SHOP on 15/01/24 at 10:30 AM
    withdrew          You withdrew Ksh500.00 from AGENT on 15/01/24 at 10:30 AM
    deposited         You deposited Ksh500.00 at AGENT on 15/01/24 at 10:30 AM

A message that matches none of them falls back to the first ``Ksh`` amount
in the text. Dates that cannot be parsed never reject a message: the
current time is substituted and a warning is logged.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from mpesa_reconcile.errors import ParseError
from mpesa_reconcile.models import StageResult, TransactionCandidate, TransactionKind

logger = logging.getLogger(__name__)

REFERENCE_LENGTH = 100

SAVINGS_ACCOUNT_LABEL = "M-Shwari"

# ---------------------------------------------------------------------------
# Grammar building blocks
# ---------------------------------------------------------------------------

_NUMBER = r"[\d,]+(?:\.\d+)?"
_AMOUNT = r"Ksh\s*(?P<amount>" + _NUMBER + r")"
_CODE_PREFIX = r"(?:(?P<code>[A-Z0-9]{8,12})\s+Confirmed\.?\s*)?"
_WHEN = (
    r"\s+on\s+(?P<date>\d{1,2}/\d{1,2}/\d{2,4})"
    r"\s+at\s+(?P<time>\d{1,2}:\d{2}\s*[AP]M)"
)
_PARTY = r"(?P<party>.+?)\.?"
_BALANCE = r"\.?\s*(?:New\s+M-PESA\s+balance\s+is\s+Ksh\s*(?P<balance>" + _NUMBER + r"))?"

_FLAGS = re.IGNORECASE | re.DOTALL

_VERB_KINDS = {
    "sent": TransactionKind.SEND,
    "paid": TransactionKind.BUY,
}

_FALLBACK_AMOUNT_RE = re.compile(r"Ksh\s*(" + _NUMBER + r")", re.IGNORECASE)
_PHONE_RE = re.compile(r"(?<!\d)(?:\+?254|0)[17]\d{8}(?!\d)")
_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})\s*([AP]M)", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"(?:\r?\n[ \t]*){2,}")


@dataclass(frozen=True)
class Grammar:
    """One recognised message dialect.

    Attributes:
        name: Short identifier used in log messages.
        pattern: Compiled pattern with named groups ``amount`` and
            optionally ``code``, ``party``, ``date``, ``time``, ``balance``
            and ``verb``.
        kind: Transaction kind, unless a ``verb`` group overrides it.
        counterparty: Fixed counterparty label for dialects without one.
    """

    name: str
    pattern: re.Pattern[str]
    kind: str
    counterparty: str | None = None


GRAMMARS: tuple[Grammar, ...] = (
    Grammar(
        name="sent",
        pattern=re.compile(
            _CODE_PREFIX + r"You\s+sent\s+" + _AMOUNT + r"\s+to\s+" + _PARTY + _WHEN + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.SEND,
    ),
    Grammar(
        name="confirmed",
        pattern=re.compile(
            r"(?P<code>[A-Z0-9]{8,12})\s+Confirmed\.?\s*"
            + _AMOUNT
            + r"\s+(?P<verb>sent|paid)\s+to\s+"
            + _PARTY
            + _WHEN
            + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.SEND,
    ),
    Grammar(
        name="savings_transfer",
        pattern=re.compile(
            r"(?:(?P<code>[A-Z0-9]{8,12})\s+)?Confirmed\.?\s*"
            + _AMOUNT
            + r"\s+transferred\s+from\s+M-?Shwari\s+account"
            + _WHEN
            + r"(?:.*?M-PESA\s+balance\s+is\s+Ksh\s*(?P<balance>" + _NUMBER + r"))?",
            _FLAGS,
        ),
        kind=TransactionKind.RECEIVE,
        counterparty=SAVINGS_ACCOUNT_LABEL,
    ),
    Grammar(
        name="received",
        pattern=re.compile(
            _CODE_PREFIX
            + r"(?:You\s+have\s+|You\s+)?received\s+"
            + _AMOUNT
            + r"\s+from\s+"
            + _PARTY
            + _WHEN
            + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.RECEIVE,
    ),
    Grammar(
        name="bought",
        pattern=re.compile(
            _CODE_PREFIX
            + r"You\s+bought\s+goods\s+worth\s+"
            + _AMOUNT
            + r"\s+from\s+"
            + _PARTY
            + _WHEN
            + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.BUY,
    ),
    Grammar(
        name="withdrew",
        pattern=re.compile(
            _CODE_PREFIX + r"You\s+withdrew\s+" + _AMOUNT + r"\s+from\s+" + _PARTY + _WHEN + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.WITHDRAW,
    ),
    Grammar(
        name="deposited",
        pattern=re.compile(
            _CODE_PREFIX + r"You\s+deposited\s+" + _AMOUNT + r"\s+at\s+" + _PARTY + _WHEN + _BALANCE,
            _FLAGS,
        ),
        kind=TransactionKind.DEPOSIT,
    ),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(message: str) -> TransactionCandidate:
    """Parse one notification message into a :class:`TransactionCandidate`.

    Args:
        message: Raw message text as copied from the phone.

    Returns:
        The parsed candidate. Its amount is always positive.

    Raises:
        ParseError: If the message is blank or contains no usable amount.
    """
    trimmed = (message or "").strip()
    if not trimmed:
        raise ParseError("message is empty")

    reference = trimmed[:REFERENCE_LENGTH]

    for grammar in GRAMMARS:
        match = grammar.pattern.search(trimmed)
        if match is None:
            continue

        amount = parse_amount(match.group("amount"))
        if amount is None:
            logger.debug(
                "Grammar %s matched but amount %r is invalid; trying next",
                grammar.name,
                match.group("amount"),
            )
            continue

        groups = match.groupdict()
        kind = _VERB_KINDS.get((groups.get("verb") or "").lower(), grammar.kind)
        if grammar.counterparty is not None:
            counterparty = grammar.counterparty
        else:
            counterparty = clean_counterparty(groups.get("party"))

        timestamp = parse_timestamp(groups.get("date"), groups.get("time"))
        degraded = timestamp is None
        if degraded:
            logger.warning(
                "Could not parse date %r / time %r in %r; using current time",
                groups.get("date"),
                groups.get("time"),
                trimmed[:50],
            )
            timestamp = now_ms()

        balance = groups.get("balance")
        code = groups.get("code")
        return TransactionCandidate(
            amount=amount,
            kind=kind,
            timestamp=timestamp,
            reference=reference,
            counterparty=counterparty,
            balance_after=parse_decimal(balance),
            phone_number=extract_phone(counterparty),
            receipt_code=code.upper() if code else None,
            timestamp_degraded=degraded,
        )

    # Fallback: keep the money, lose the details.
    fallback = _FALLBACK_AMOUNT_RE.search(trimmed)
    if fallback is not None:
        amount = parse_amount(fallback.group(1))
        if amount is not None:
            logger.info("No grammar matched %r; using first amount only", trimmed[:50])
            return TransactionCandidate(
                amount=amount,
                kind=TransactionKind.SEND,
                timestamp=now_ms(),
                reference=reference,
                timestamp_degraded=True,
            )

    raise ParseError(f"unrecognised message format: {trimmed[:50]!r}")


def split_messages(text: str) -> list[str]:
    """Split pasted SMS text on runs of blank lines.

    Returns:
        Non-empty, trimmed message segments in input order.
    """
    if not text:
        return []
    return [seg.strip() for seg in _BLANK_LINES_RE.split(text) if seg.strip()]


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse ``"1,045.00"`` style amounts. Returns ``None`` unless positive."""
    amount = parse_decimal(raw)
    if amount is None or amount <= 0:
        return None
    return amount


def parse_decimal(raw: str | None) -> Decimal | None:
    """Parse a number with thousands separators, or return ``None``."""
    if raw is None:
        return None
    cleaned = raw.replace(",", "").strip()
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_timestamp(date_str: str | None, time_str: str | None) -> int | None:
    """Convert ``d/m/yy`` and ``h:mm AM`` strings to local epoch milliseconds.

    Two-digit years are taken to be in the 2000s. Every field is range
    checked (hour 1-12, minute 0-59, day 1-31, month 1-12, year 2000-2100).

    Returns:
        Epoch milliseconds, or ``None`` if anything is missing or invalid.
    """
    if not date_str or not time_str:
        return None

    parts = date_str.strip().split("/")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return None
    day, month = int(parts[0]), int(parts[1])
    year = int(parts[2])
    if len(parts[2]) == 2:
        year += 2000

    time_match = _TIME_RE.fullmatch(time_str.strip())
    if time_match is None:
        return None
    hour, minute = int(time_match.group(1)), int(time_match.group(2))
    period = time_match.group(3).upper()

    if not (1 <= hour <= 12 and 0 <= minute <= 59):
        return None
    if not (1 <= day <= 31 and 1 <= month <= 12 and 2000 <= year <= 2100):
        return None

    if period == "PM" and hour != 12:
        hour += 12
    elif period == "AM" and hour == 12:
        hour = 0

    try:
        moment = datetime(year, month, day, hour, minute)
    except ValueError:
        # e.g. 31/02
        return None
    return int(moment.timestamp() * 1000)


def clean_counterparty(raw: str | None) -> str | None:
    """Trim whitespace and trailing punctuation; empty becomes ``None``."""
    if raw is None:
        return None
    cleaned = " ".join(raw.split()).rstrip(" .,;:-")
    return cleaned or None


def extract_phone(text: str | None) -> str | None:
    """Return the first Kenyan mobile number in *text*, if any."""
    if not text:
        return None
    match = _PHONE_RE.search(text)
    return match.group(0) if match else None


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def read(text: str) -> StageResult:
    """Parse a blank-line separated SMS dump.

    Every segment is parsed independently. Segments that fail are logged and
    reported as short excerpts in ``errors``; they never stop the rest.
    """
    result = StageResult()
    for segment in split_messages(text):
        result.segments += 1
        try:
            result.candidates.append(parse(segment))
        except ParseError as exc:
            logger.info("Skipping unparseable message: %s", exc.reason)
            result.errors.append(segment[:50])
    return result
