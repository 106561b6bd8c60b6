"""Configuration loading, writing, and project initialization.

Reads TOML config files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Depends only on ``models.py`` and ``errors.py``.
"""

from __future__ import annotations

import sys
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

from mpesa_reconcile.errors import ValidationError
from mpesa_reconcile.models import ALL_KINDS, AppConfig, MerchantRule

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# M-Pesa Reconcile configuration

[import]
# Transaction kinds kept on import: send, buy, receive, withdraw, deposit
sms_kinds = ["send", "buy"]
statement_kinds = ["send"]

[ledger]
path = "ledger.json"
owner = "me"

[review]
# Start the review filtered to the only year present (or the current year)
auto_select_year = true
"""

_DEFAULT_RULES_TOML = """\
# Merchant-to-category rules, added to the built-in category patterns.
# User rules always take precedence over learned rules.
# Matching: case-insensitive substring of the normalized merchant text.

[user_rules]
# Manually authored rules. The system never modifies this section.
# Format: pattern = "Category"

# Examples:
# "java house" = "Food & Drinks"
# "zuku" = "Utilities"

[learned_rules]
# System-managed rules learned from review corrections. Do not hand-edit.
# Same format as user_rules.
"""

# Directories that ``initialize`` creates.
_INIT_DIRS = [
    "imports",
    "exports",
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``config.toml`` from *root* and return an :class:`AppConfig`.

    Missing sections and keys fall back to the :class:`AppConfig` defaults.

    Args:
        root: Project root directory containing ``config.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
        ValidationError: If a configured transaction kind is unknown.
    """
    data = _read_toml(root / "config.toml")
    defaults = AppConfig()

    imports = data.get("import", {})
    ledger = data.get("ledger", {})
    review = data.get("review", {})

    return AppConfig(
        sms_kinds=_kinds(imports.get("sms_kinds", defaults.sms_kinds), "sms_kinds"),
        statement_kinds=_kinds(
            imports.get("statement_kinds", defaults.statement_kinds), "statement_kinds"
        ),
        ledger_path=ledger.get("path", defaults.ledger_path),
        owner=ledger.get("owner", defaults.owner),
        auto_select_year=bool(review.get("auto_select_year", defaults.auto_select_year)),
    )


def load_rules(root: Path) -> list[MerchantRule]:
    """Load ``rules.toml`` and return a sorted list of rules.

    User rules come first, then learned rules.  Within each group rules
    are in file order (insertion order preserved by ``tomllib``).

    Args:
        root: Project root directory containing ``rules.toml``.

    Returns:
        A list of :class:`MerchantRule` objects.

    Raises:
        FileNotFoundError: If ``rules.toml`` does not exist.
    """
    data = _read_toml(root / "rules.toml")
    rules: list[MerchantRule] = []

    for pattern, value in data.get("user_rules", {}).items():
        rules.append(MerchantRule(pattern=pattern, category=str(value).strip(), source="user"))

    for pattern, value in data.get("learned_rules", {}).items():
        rules.append(MerchantRule(pattern=pattern, category=str(value).strip(), source="learned"))

    return rules


def save_learned_rules(root: Path, rules: list[MerchantRule]) -> None:
    """Write learned rules to the ``[learned_rules]`` section of ``rules.toml``.

    The ``[user_rules]`` section (and everything above it) is preserved
    verbatim.  Only the ``[learned_rules]`` section is rewritten.

    Args:
        root: Project root directory containing ``rules.toml``.
        rules: The complete list of learned rules to write.  Only rules
            with ``source="learned"`` are written; others are ignored.
    """
    rules_path = root / "rules.toml"
    original_text = rules_path.read_text(encoding="utf-8")

    marker = "[learned_rules]"
    idx = original_text.find(marker)
    if idx == -1:
        prefix = original_text.rstrip() + "\n\n"
    else:
        prefix = original_text[:idx]

    learned = {r.pattern: r.category for r in rules if r.source == "learned"}

    section = (
        "[learned_rules]\n"
        "# System-managed rules learned from review corrections. Do not hand-edit.\n"
        "# Same format as user_rules.\n"
    )
    if learned:
        # tomli_w quotes keys and values; drop the table header it emits.
        kv_text = tomli_w.dumps({"learned_rules": learned})
        section += kv_text.split("\n", 1)[1] if "\n" in kv_text else ""

    rules_path.write_text(prefix + section, encoding="utf-8")


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config files.

    Idempotent: existing directories are left alone and existing files
    are **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(target_dir / "config.toml", _DEFAULT_CONFIG_TOML)
    _write_if_missing(target_dir / "rules.toml", _DEFAULT_RULES_TOML)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _kinds(values: list, key: str) -> list[str]:
    kinds = [str(v).strip().lower() for v in values]
    unknown = [k for k in kinds if k not in ALL_KINDS]
    if unknown:
        raise ValidationError(
            f"config.toml: unknown transaction kind(s) in {key}: {', '.join(unknown)}"
        )
    return kinds


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
