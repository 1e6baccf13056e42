# Overview: Flask CLI command groups for finance follow-up and reporting.

# backend/creditpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schedules:
# - python -m flask finance reconcile-schedules [--dry-run]
#   Recompute every credit/installment schedule whose payment sum drifted from its items.
# - python -m flask finance recompute-schedule 42
#   Recompute one transaction's schedule now.
#
# Post-commit failures:
# - python -m flask finance retry-failures
#   Replay every unresolved side effect (schedule recompute, bonus, audit task) once.
# - python -m flask finance failures
#   List unresolved side effect failures.
#
# Exchange rates:
# - python -m flask rates set --from USD --to UZS --rate 12650 [--branch-id 1]
#   Add an active rate (branch-scoped when --branch-id is given).
#
# Reports:
# - python -m flask reports cashier --cashier-id 3 --branch-id 1 --date 2024-05-01
#   Regenerate and print one cashier's daily report.

import click
from flask.cli import with_appcontext

from .services import cashier_report_service, currency_service, schedule_service, side_effects
from .services.errors import FinanceError


@click.group('finance')
def finance_group():
    """Schedule reconciliation and side effect recovery."""


@finance_group.command('reconcile-schedules')
@click.option('--dry-run', is_flag=True, help='Only list drifted transactions')
@with_appcontext
def reconcile_schedules_cli(dry_run):
    """Find and repair schedules that disagree with their transaction's items."""
    result = schedule_service.reconcile_schedules(dry_run=dry_run)
    drifted = result["drifted"]
    if not drifted:
        click.echo("OK No drifted schedules")
        return
    click.echo(f"WARN {len(drifted)} drifted: {', '.join(str(i) for i in drifted)}")
    if dry_run:
        click.echo("INFO Dry run, nothing changed")
        return
    click.echo(f"OK Repaired {len(result['repaired'])}")
    failed = sorted(set(drifted) - set(result["repaired"]))
    if failed:
        click.echo(f"ERROR Still drifted (queued for retry): {', '.join(str(i) for i in failed)}")


@finance_group.command('recompute-schedule')
@click.argument('transaction_id', type=int)
@with_appcontext
def recompute_schedule_cli(transaction_id):
    """Recompute one transaction's schedule."""
    try:
        plan = schedule_service.recompute_schedule(transaction_id)
    except FinanceError as exc:
        raise click.ClickException(exc.message)
    if plan is None:
        click.echo(f"INFO Transaction {transaction_id} has nothing to recompute")
        return
    click.echo(
        f"OK Transaction {transaction_id}: principal={plan.total_principal_cents} "
        f"with_interest={plan.remaining_with_interest_cents} rows={len(plan.rows)}"
    )


@finance_group.command('retry-failures')
@with_appcontext
def retry_failures_cli():
    """Replay unresolved post-commit side effects once."""
    outcome = side_effects.retry_failures()
    click.echo(
        f"OK resolved={len(outcome['resolved'])} "
        f"failed={len(outcome['failed'])} skipped={len(outcome['skipped'])}"
    )


@finance_group.command('failures')
@with_appcontext
def list_failures_cli():
    """List unresolved side effect failures."""
    failures = side_effects.list_open_failures()
    if not failures:
        click.echo("OK No open failures")
        return
    for failure in failures:
        click.echo(
            f"#{failure.id} {failure.name} tx={failure.transaction_id} "
            f"attempts={failure.attempts} {failure.error}"
        )


@click.group('rates')
def rates_group():
    """Exchange rate maintenance."""


@rates_group.command('set')
@click.option('--from', 'from_currency', required=True, help='Source currency code')
@click.option('--to', 'to_currency', required=True, help='Target currency code')
@click.option('--rate', required=True, help='Units of target per one source unit')
@click.option('--branch-id', type=int, default=None, help='Scope the rate to a branch')
@with_appcontext
def set_rate_cli(from_currency, to_currency, rate, branch_id):
    """Add an active exchange rate."""
    row = currency_service.create_rate(from_currency, to_currency, rate, branch_id=branch_id)
    scope = f"branch {branch_id}" if branch_id else "global"
    click.echo(f"OK {row.from_currency}->{row.to_currency} = {row.rate} ({scope})")


@click.group('reports')
def reports_group():
    """Cashier reporting."""


@reports_group.command('cashier')
@click.option('--cashier-id', type=int, required=True, help='Cashier (seller) user ID')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--date', 'day', required=True, help='Report day (YYYY-MM-DD)')
@with_appcontext
def cashier_report_cli(cashier_id, branch_id, day):
    """Regenerate one cashier's daily report and print it."""
    try:
        start, end = cashier_report_service.day_bounds(day)
    except (FinanceError, ValueError) as exc:
        raise click.ClickException(str(exc))
    report = cashier_report_service.generate_cashier_report(cashier_id, branch_id, start, end)
    for key, value in report.to_dict().items():
        click.echo(f"{key:>24}: {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(finance_group)
    app.cli.add_command(rates_group)
    app.cli.add_command(reports_group)
