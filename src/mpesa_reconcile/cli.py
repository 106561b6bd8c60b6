"""Click CLI entry point for the mpesa command.

Handles argument parsing, config loading, the interactive review prompt and
error display. All business logic is delegated to ``pipeline``, ``review``,
``categorizer``, ``config``, ``store``, ``analysis`` and ``export``.
"""

from __future__ import annotations

import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from mpesa_reconcile import __version__
from mpesa_reconcile.errors import CommitError, ValidationError
from mpesa_reconcile.models import Overrides, RowStatus


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _read_input(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        click.echo(f"Error reading {path}: {exc}", err=True)
        sys.exit(1)


def _load_project(root: Path):
    """Load config, rules and the ledger store, or exit with a hint."""
    from mpesa_reconcile.config import load_config, load_rules
    from mpesa_reconcile.store import JsonLedgerStore

    try:
        config = load_config(root)
        rules = load_rules(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'mpesa init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)

    store = JsonLedgerStore(root / config.ledger_path, owner=config.owner)
    return config, rules, store


@click.group()
@click.version_option(version=__version__, prog_name="mpesa-reconcile")
def cli() -> None:
    """Import M-Pesa messages and statements into a reviewed personal ledger."""


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new data directory with the standard structure."""
    from mpesa_reconcile.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized M-Pesa reconcile project in {target}")


@cli.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--statement", is_flag=True, default=False, help="FILE is statement text, not SMS.")
@click.option(
    "--yes", is_flag=True, default=False, help="Accept every row except exact duplicates."
)
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def import_(file: str, statement: bool, yes: bool, verbose: bool, debug: bool) -> None:
    """Parse FILE, review the transactions, and save accepted ones to the ledger."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config, rules, store = _load_project(root)

    from mpesa_reconcile.categorizer import build_rules, learn
    from mpesa_reconcile.config import save_learned_rules
    from mpesa_reconcile.export import print_summary
    from mpesa_reconcile.pipeline import build_review_batch, commit
    from mpesa_reconcile.review import (
        accept_many,
        committable_rows,
        reject_many,
        start_review,
        summarize,
    )

    text = _read_input(file)

    try:
        history = store.load_entries()
        series = store.load_series()
    except Exception as exc:
        click.echo(f"Error reading ledger: {exc}", err=True)
        sys.exit(1)

    try:
        batch = build_review_batch(
            text,
            source="statement" if statement else "sms",
            history=history,
            series=series,
            config=config,
            rules=build_rules(rules),
        )
    except ValidationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if verbose:
        click.echo(f"Parsed {batch.parsed} of {batch.segments} message(s).")

    state = start_review(batch.rows, auto_select_year=config.auto_select_year)

    if yes:
        exact = [r.id for r in state.rows if r.duplicate.confidence == "exact"]
        state = reject_many(state, exact)
        state = accept_many(state, [r.id for r in state.rows])
    else:
        state = _review_loop(state)
        if state is None:
            click.echo("Import cancelled. Nothing was saved.")
            return

    rows = committable_rows(state)
    try:
        committed = commit(rows, store)
    except CommitError as exc:
        click.echo(f"Error saving to ledger: {exc}. Nothing was saved.", err=True)
        sys.exit(1)

    result = learn(list(rows), rules)
    if result.added or result.updated:
        try:
            save_learned_rules(root, result.rules)
        except Exception as exc:
            click.echo(f"Warning: could not save learned rules: {exc}", err=True)
        else:
            if verbose:
                click.echo(f"Learned {result.added} new and {result.updated} updated rule(s).")

    print_summary(batch, summarize(state.rows), committed)


def _describe(index: int, row) -> str:
    from datetime import datetime

    from mpesa_reconcile.pipeline import resolve_entry

    entry = resolve_entry(row)
    when = datetime.fromtimestamp(row.candidate.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
    flags = []
    if row.duplicate.is_duplicate:
        flags.append(f"dup:{row.duplicate.confidence}")
    if row.recurring_match.series_id:
        flags.append(f"recurring:{row.recurring_match.name}")
    if row.candidate.timestamp_degraded:
        flags.append("date?")
    status = "" if row.status == RowStatus.PENDING else f"[{row.status}] "
    return (
        f"{index:>3}. {status}{when}  Ksh {entry.amount:>10,.2f}  "
        f"{entry.payee[:28]:<28}  {entry.category}"
        + (f"  ({', '.join(flags)})" if flags else "")
    )


_REVIEW_HELP = """\
Commands:
  a N [N...]   accept rows          r N [N...]   reject rows
  e N          edit a row           A / R        accept / reject all shown
  y YEAR       filter by year       m MONTH      filter by month (0 clears)
  s            save and finish      q            cancel the import"""


def _row_at(shown, number: str):
    """Row for a 1-based number typed by the user; IndexError if out of range."""
    index = int(number)
    if not 1 <= index <= len(shown):
        raise IndexError(number)
    return shown[index - 1]


def _review_loop(state):
    """Prompt for review actions until the user saves (returns the state) or quits (None)."""
    from mpesa_reconcile.review import (
        accept_many,
        available_years,
        edit,
        reject_many,
        set_month,
        set_year,
        summary,
        visible_rows,
    )

    click.echo(_REVIEW_HELP)
    while True:
        shown = visible_rows(state)
        counts = summary(state)
        click.echo()
        years = ", ".join(str(y) for y in available_years(state.rows))
        click.echo(
            f"Showing {len(shown)} of {counts.overall.total} rows "
            f"(year: {state.year or 'all'}, month: {state.month or 'all'}; years: {years})"
        )
        for index, row in enumerate(shown, start=1):
            click.echo(_describe(index, row))
        click.echo(
            f"Pending {counts.overall.pending}, accepted {counts.overall.accepted}, "
            f"edited {counts.overall.edited}, rejected {counts.overall.rejected}"
        )

        command = click.prompt("Action", default="s").strip()
        if not command:
            continue
        verb, _, rest = command.partition(" ")
        args = rest.split()

        try:
            if verb == "s":
                return state
            if verb == "q":
                if click.confirm("Discard all pending imports?", default=False):
                    return None
            elif verb in ("a", "r"):
                ids = [_row_at(shown, n).id for n in args]
                state = (accept_many if verb == "a" else reject_many)(state, ids)
            elif verb in ("A", "R"):
                ids = [row.id for row in shown]
                state = (accept_many if verb == "A" else reject_many)(state, ids)
            elif verb == "e":
                row = _row_at(shown, args[0])
                state = edit(state, row.id, _prompt_overrides(row))
            elif verb == "y":
                state = set_year(state, int(args[0]) if args and args[0] != "0" else None)
            elif verb == "m":
                state = set_month(state, int(args[0]) if args and args[0] != "0" else None)
            else:
                click.echo(_REVIEW_HELP)
        except (IndexError, ValueError):
            click.echo("Invalid row number or value.", err=True)
        except ValidationError as exc:
            click.echo(f"Error: {exc}", err=True)


def _prompt_overrides(row) -> Overrides:
    from mpesa_reconcile.pipeline import resolve_entry

    current = resolve_entry(row)
    payee = click.prompt("Payee", default=current.payee)
    category = click.prompt("Category", default=current.category)
    raw_amount = click.prompt("Amount", default=str(current.amount))
    try:
        amount = Decimal(raw_amount.replace(",", ""))
    except InvalidOperation:
        raise ValueError(raw_amount) from None
    return Overrides(
        counterparty=payee if payee != current.payee else None,
        category=category if category != current.category else None,
        amount=amount if amount != current.amount else None,
    )


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--statement", is_flag=True, default=False, help="FILE is statement text, not SMS.")
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
def analyze(file: str, statement: bool, verbose: bool) -> None:
    """Print a spending summary for FILE without saving anything."""
    _configure_logging(verbose, debug=False)

    from mpesa_reconcile.analysis import analyze_messages, analyze_statement
    from mpesa_reconcile.export import print_analysis

    text = _read_input(file)
    result = analyze_statement(text) if statement else analyze_messages(text)
    if result.transaction_count == 0:
        click.echo(
            "Error: No valid M-Pesa transactions found. Please check your input format.",
            err=True,
        )
        sys.exit(1)
    print_analysis(result)


@cli.command()
def recurring() -> None:
    """List payees that look like recurring payments in the ledger."""
    from mpesa_reconcile.recurring import detect_recurring

    root = Path.cwd()
    _, _, store = _load_project(root)
    try:
        entries = store.load_entries()
    except Exception as exc:
        click.echo(f"Error reading ledger: {exc}", err=True)
        sys.exit(1)

    payees = detect_recurring(entries)
    if not payees:
        click.echo("No recurring payees found.")
        return

    click.echo("Recurring payees:")
    for payee in payees:
        click.echo(f"  {payee}")


@cli.command()
@click.option(
    "--output-dir", default="exports", type=click.Path(), help="Directory for the CSV file."
)
def export(output_dir: str) -> None:
    """Export the ledger to CSV."""
    from mpesa_reconcile.export import export as export_csv

    root = Path.cwd()
    _, _, store = _load_project(root)
    try:
        path = export_csv(store.load_entries(), root / output_dir)
    except Exception as exc:
        click.echo(f"Error writing output: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Wrote {path}")
