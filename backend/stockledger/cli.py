# Overview: Flask CLI command groups for database setup, recurring postings and reports.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger jobs:
# - python -m flask ledger post-recurring [--as-of 2024-02-15]
#   Post this month's recurring expenses; safe to run more than once per month.
# - python -m flask ledger report pnl --start 2024-01-01 --end 2024-01-31
#   Print a report as JSON (kinds: pnl, cashflow, ar, layaway, sales-by-product,
#   sales-by-person, processed-orders,
#   to-order, batches, dashboard).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import expense_service, reporting_service
from .services.concurrency import retry_settings, run_with_retry
from .validation import parse_optional_datetime


@click.group('system')
def system_group():
    """Database bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("OK Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    from . import models  # noqa: F401

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("Creating tables...")
    db.create_all()
    click.echo("OK Database reset complete")


@click.group('ledger')
def ledger_group():
    """Recurring postings and ledger reports."""


@ledger_group.command('post-recurring')
@click.option('--as-of', 'as_of', default=None, help='Any date in the target month (YYYY-MM-DD); defaults to today')
@with_appcontext
def post_recurring(as_of):
    """Post every recurring expense not yet posted for the month."""
    try:
        as_of_dt = parse_optional_datetime(as_of, "as_of")
        summary = run_with_retry(
            lambda: expense_service.post_due_recurring_expenses(as_of_dt),
            **retry_settings(),
        )
    except LedgerError as exc:
        current_app.logger.warning("Recurring posting failed: %s", exc)
        raise click.ClickException(str(exc))

    click.echo(f"Month {summary.month}: posted {summary.posted_count}, skipped {summary.skipped_count}")
    for expense_id in summary.posted_ids:
        click.echo(f"  + {expense_id}")


@ledger_group.command('report')
@click.argument('kind')
@click.option('--start', default=None, help='Range start (YYYY-MM-DD or ISO-8601)')
@click.option('--end', default=None, help='Range end, inclusive')
@with_appcontext
def report(kind, start, end):
    """Run a ledger report and print it as JSON."""
    try:
        result = reporting_service.run_report(
            kind,
            parse_optional_datetime(start, "start"),
            parse_optional_datetime(end, "end"),
        )
    except LedgerError as exc:
        raise click.ClickException(str(exc))

    click.echo(json.dumps(reporting_service.report_to_dict(result), indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
