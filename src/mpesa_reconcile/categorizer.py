"""Merchant categorizer: scored rule matching and the learn workflow.

Every category carries an ordered list of patterns. A pattern is either a
compiled regex (a structural, whole-word match) or a literal string matched
as a substring of the normalized merchant text. Scores accumulate per
category:

* regex hit: +12
* literal substring hit: +8
* every token that contains, or is contained in, a literal: +3
* paybill/till number with a paybill keyword: +6 for Utilities,
  Finance / Transfers and Work & Subscriptions

A well-known merchant name (``CANONICAL_MERCHANTS``) sets a 7.5 baseline a
category has to beat. The highest score wins; on a tie the category declared
first keeps the lead. ``confidence = min(1, score / 22)``.

``learn`` turns reviewer corrections into extra literal patterns
(``MerchantRule`` with ``source="learned"``), never overriding user rules.

Depends on ``models.py`` only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from mpesa_reconcile.models import (
    CategoryMatch,
    LearnResult,
    MerchantRule,
    ReviewRow,
    RowStatus,
)

logger = logging.getLogger(__name__)

REGEX_SCORE = 12
SUBSTRING_SCORE = 8
TOKEN_SCORE = 3
CANONICAL_SCORE = 15
PAYBILL_SCORE = 6
CONFIDENCE_DENOMINATOR = 22

PAYBILL_CATEGORIES = frozenset({"utilities", "finance", "work"})


@dataclass(frozen=True)
class CategoryRule:
    """A category and the patterns that score for it.

    Attributes:
        key: Short stable identifier, e.g. ``"food"``.
        name: Display name, e.g. ``"Food & Drinks"``.
        patterns: Compiled regexes and lowercase literal strings, in the
            order they are reported as ``matched_pattern``.
    """

    key: str
    name: str
    patterns: tuple[str | re.Pattern[str], ...]


def _words(*words: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(rf"\b{re.escape(w)}\b", re.IGNORECASE) for w in words)


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        "transport",
        "Transport",
        _words("uber", "bolt", "boda", "matatu", "taxi", "train")
        + ("fuel", "petrol", "shell", "total", "carwash"),
    ),
    CategoryRule(
        "food",
        "Food & Drinks",
        _words("restaurant", "cafe", "coffee", "kfc", "pizza")
        + (
            "ubereats",
            "bolt food",
            "naivas",
            "carrefour",
            "quickmart",
            "supermarket",
            "grocery",
            "eat",
            "meals",
        ),
    ),
    CategoryRule(
        "shopping",
        "Shopping",
        _words("shop", "store")
        + ("jumia", "kilimall", "mall", "fashion", "clothing", "electronics")
        + _words("amazon"),
    ),
    CategoryRule(
        "entertainment",
        "Entertainment",
        (
            "netflix",
            "showmax",
            "spotify",
            "dstv",
            "movie",
            "cinema",
            "betika",
            "sportpesa",
            "odibets",
        ),
    ),
    CategoryRule(
        "utilities",
        "Utilities",
        (
            "kplc",
            "kenya power",
            "water",
            "nairobi water",
            "airtime",
            "data",
            "internet",
            "wifi",
            "safaricom",
            "airtel",
            "telkom",
        ),
    ),
    CategoryRule(
        "health",
        "Health",
        ("hospital", "clinic", "pharmacy", "medical", "nhif", "insurance"),
    ),
    CategoryRule(
        "finance",
        "Finance / Transfers",
        _words("bank", "kcb", "equity", "pesalink")
        + ("withdraw", "deposit", "tala", "mshwari", "fuliza"),
    ),
    CategoryRule(
        "work",
        "Work & Subscriptions",
        (
            "vercel",
            "cursor",
            "git",
            "aws",
            "google",
            "microsoft",
            "subscription",
            "netlify",
            "stripe",
            "paystack",
            "domain",
            "hosting",
        ),
    ),
    CategoryRule(
        "savings",
        "Savings / Goals",
        ("saving", "savings", "goal", "piggy", "investment", "bamboo"),
    ),
    CategoryRule(
        "debt",
        "Debt / Loans",
        ("loan", "repay", "repayment", "credit", "installment", "fuliza"),
    ),
    CategoryRule(
        "misc",
        "Miscellaneous",
        ("misc", "other", "uncategorized", "unknown"),
    ),
)

# Alias (``*`` is a wildcard and ignored when matching) -> canonical merchant.
CANONICAL_MERCHANTS: dict[str, str] = {
    "naivas": "naivas",
    "carrefour": "carrefour",
    "jumia": "jumia",
    "uber *": "uber",
    "bolt": "bolt",
    "kfc": "kfc",
    "safaricom": "safaricom",
}

_STRIP_RE = re.compile(r"[^\w\s@.-]|_")
_SPACE_RE = re.compile(r"\s+")
_PAYBILL_NUMBER_RE = re.compile(r"(paybill[:#-]?|paybill|paybile|billto)?\s*([0-9]{5,6})", re.IGNORECASE)
_PAYBILL_KEYWORD_RE = re.compile(r"paybill|paybillno|till", re.IGNORECASE)
_PHONE_DIGITS_RE = re.compile(r"\b(?:\+?254|0)?\d{9,10}\b")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def normalize(text: str | None) -> str:
    """Lowercase, replace punctuation (except ``@ . -``) with spaces, squash."""
    if not text:
        return ""
    return _SPACE_RE.sub(" ", _STRIP_RE.sub(" ", text.lower())).strip()


def tokens(text: str | None) -> list[str]:
    """Words of at least two characters that are not pure numbers."""
    return [t for t in normalize(text).split(" ") if len(t) >= 2 and not t.isdigit()]


def has_paybill_number(text: str) -> bool:
    """True when *text* (whitespace ignored) contains a 5-6 digit run."""
    return _PAYBILL_NUMBER_RE.search(_SPACE_RE.sub("", text)) is not None


def canonical_lookup(normalized: str) -> tuple[str, str] | None:
    """Return ``(canonical, alias)`` for the first alias found in the text."""
    for alias, canonical in CANONICAL_MERCHANTS.items():
        needle = alias.replace("*", "").strip().lower()
        if needle and needle in normalized:
            return canonical, alias
    return None


def _pattern_label(pattern: str | re.Pattern[str]) -> str:
    return pattern if isinstance(pattern, str) else pattern.pattern


def _score_pattern(
    normalized: str, tks: list[str], pattern: str | re.Pattern[str]
) -> tuple[int, list[str]]:
    if not isinstance(pattern, str):
        return (REGEX_SCORE if pattern.search(normalized) else 0), []

    score = 0
    matched: list[str] = []
    pat = pattern.lower()
    if pat in normalized:
        score += SUBSTRING_SCORE
        matched.append(pat)
    for t in tks:
        if t in pat or pat in t:
            score += TOKEN_SCORE
            matched.append(t)
    return score, matched


# ---------------------------------------------------------------------------
# Categorize
# ---------------------------------------------------------------------------


def categorize(
    merchant: str | None,
    description: str | None = None,
    rules: tuple[CategoryRule, ...] | list[CategoryRule] = CATEGORY_RULES,
) -> CategoryMatch:
    """Score a merchant string against every category.

    Args:
        merchant: Raw merchant or counterparty text.
        description: Optional extra text, scored together with the merchant.
        rules: Category rules in priority order. Defaults to the built-in
            ``CATEGORY_RULES``; pass the result of :func:`build_rules` to
            include user and learned patterns.

    Returns:
        A :class:`CategoryMatch`. ``category`` is ``None`` when nothing
        scored above the baseline. Never raises.
    """
    merged = " ".join([merchant or "", description or ""])
    normalized = normalize(merged)
    tks = tokens(normalized)
    paybill = has_paybill_number(merged) and _PAYBILL_KEYWORD_RE.search(normalized) is not None

    best_category: str | None = None
    best_score: float = 0
    best_pattern: str | None = None
    best_tokens: list[str] = []

    canonical = canonical_lookup(normalized)
    if canonical is not None:
        best_score = CANONICAL_SCORE / 2
        best_tokens = [canonical[1]]

    for rule in rules:
        score = 0
        matched_tokens: list[str] = []
        matched_pattern: str | None = None
        for pattern in rule.patterns:
            pattern_score, pattern_tokens = _score_pattern(normalized, tks, pattern)
            if pattern_score > 0:
                score += pattern_score
                matched_tokens.extend(pattern_tokens)
                if matched_pattern is None:
                    matched_pattern = _pattern_label(pattern)

        if paybill and rule.key in PAYBILL_CATEGORIES:
            score += PAYBILL_SCORE

        if score > best_score:
            best_category = rule.name
            best_score = score
            best_pattern = matched_pattern
            best_tokens = matched_tokens

    return CategoryMatch(
        category=best_category,
        score=best_score,
        confidence=min(1.0, best_score / CONFIDENCE_DENOMINATOR),
        matched_pattern=best_pattern,
        tokens_matched=tuple(best_tokens),
        normalized_text=normalized,
    )


def confidence_tier(confidence: float) -> str:
    """Bucket a 0..1 confidence into ``"high"``, ``"medium"`` or ``"low"``."""
    if confidence >= 0.75:
        return "high"
    if confidence >= 0.4:
        return "medium"
    return "low"


def build_rules(extra_rules: list[MerchantRule]) -> tuple[CategoryRule, ...]:
    """Merge user and learned patterns into a copy of ``CATEGORY_RULES``.

    Each extra pattern is appended, as a literal, to the category whose name
    (or key) matches the rule's category, case-insensitively. Categories that
    do not exist yet are added at the end in first-seen order. User rules
    are placed before learned rules within a category.

    Args:
        extra_rules: Rules as returned by ``config.load_rules()``.

    Returns:
        A new rule tuple. ``CATEGORY_RULES`` itself is never modified.
    """
    merged: dict[str, tuple[str, str, list]] = {}
    for rule in CATEGORY_RULES:
        merged[rule.name.lower()] = (rule.key, rule.name, list(rule.patterns))
        merged.setdefault(rule.key, merged[rule.name.lower()])

    ordered = sorted(extra_rules, key=lambda r: 0 if r.source == "user" else 1)
    new_names: list[str] = []
    for extra in ordered:
        pattern = normalize(extra.pattern)
        if not pattern:
            continue
        lookup = extra.category.lower()
        if lookup not in merged:
            merged[lookup] = (_slug(extra.category), extra.category, [])
            new_names.append(lookup)
        patterns = merged[lookup][2]
        if pattern not in patterns:
            patterns.append(pattern)

    rules = [
        CategoryRule(key, name, tuple(patterns))
        for key, name, patterns in (merged[r.name.lower()] for r in CATEGORY_RULES)
    ]
    rules.extend(CategoryRule(*merged[n][:2], tuple(merged[n][2])) for n in new_names)
    return tuple(rules)


def _slug(name: str) -> str:
    return "-".join(normalize(name).replace("/", " ").split()) or "custom"


# ---------------------------------------------------------------------------
# Learn workflow
# ---------------------------------------------------------------------------


def learn(rows: list[ReviewRow], rules: list[MerchantRule]) -> LearnResult:
    """Extract new/updated learned rules from reviewer category corrections.

    For every edited row whose category override differs from the suggested
    category:

    - If a **user rule** already matches the payee, skip (never overwrite
      user rules).
    - If a **learned rule** already exists for the payee pattern, update
      it with the corrected category.
    - Otherwise, add a new learned rule.

    The pattern is the normalized payee name with phone numbers removed.

    Args:
        rows: Review rows, typically the committed ones.
        rules: The current rule list (user + learned), as returned by
            ``config.load_rules()``. Not modified.

    Returns:
        A ``LearnResult`` with counts and the complete updated rule list.
    """
    result = LearnResult(rules=list(rules))
    learned_index = {
        r.pattern: i for i, r in enumerate(result.rules) if r.source == "learned"
    }

    for row in rows:
        if row.status != RowStatus.EDITED or row.overrides is None:
            continue
        corrected = row.overrides.category
        if not corrected:
            continue
        suggested = row.payee_match.suggested_category or row.category_match.category
        if corrected == suggested:
            continue

        name = row.overrides.counterparty or row.candidate.counterparty or ""
        pattern = learn_pattern(name)
        if not pattern:
            continue

        if _has_user_rule_match(pattern, result.rules):
            result.skipped += 1
            continue

        if pattern in learned_index:
            index = learned_index[pattern]
            if result.rules[index].category != corrected:
                result.rules[index] = MerchantRule(pattern, corrected, source="learned")
                result.updated += 1
        else:
            learned_index[pattern] = len(result.rules)
            result.rules.append(MerchantRule(pattern, corrected, source="learned"))
            result.added += 1

    if result.added or result.updated:
        logger.info("Learned %d new and %d updated rule(s)", result.added, result.updated)
    return result


def learn_pattern(name: str) -> str:
    """Rule pattern for a payee name: normalized, phone numbers removed.

    Returns an empty string when fewer than three characters remain.
    """
    pattern = _SPACE_RE.sub(" ", _PHONE_DIGITS_RE.sub(" ", normalize(name))).strip()
    return pattern if len(pattern) >= 3 else ""


def _has_user_rule_match(pattern: str, rules: list[MerchantRule]) -> bool:
    """Check if any user rule matches (substring, case-insensitive) the pattern."""
    for rule in rules:
        if rule.source == "user" and normalize(rule.pattern) and normalize(rule.pattern) in pattern:
            return True
    return False
