# Overview: Flask CLI command groups for bootstrap, ledger audit, and event redelivery.

# backend/mardecores/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create missing tables (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Credit ledger:
# - python -m flask ledger accounts [--status active]
#   List credit accounts with their balances.
# - python -m flask ledger audit [--account-id 7] [--fix]
#   Report divergences between balances/status and the payment ledger; --fix repairs them.
# - python -m flask ledger sync-job [--once] [--interval 30] [--no-fix]
#   Periodic audit + auto fix (runs until interrupted unless --once).
#
# Reconciliation events:
# - python -m flask events pending [--limit 50]
#   List undelivered events.
# - python -m flask events redeliver [--limit 100]
#   Retry delivery of undelivered events.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .money import format_brl
from .services import audit_service, ledger_store, notification_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready.")


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

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('ledger')
def ledger_group():
    """Credit ledger inspection and repair."""


@ledger_group.command('accounts')
@click.option('--status', type=click.Choice(['active', 'paid_off']), default=None)
@click.option('--customer-id', type=int, default=None)
@with_appcontext
def list_accounts_cli(status, customer_id):
    """List credit accounts."""
    accounts = ledger_store.list_accounts(status=status, customer_id=customer_id)
    if not accounts:
        click.echo("No credit accounts found.")
        return
    for account in accounts:
        click.echo(
            f"{account.account_number}  customer={account.customer_id}  {account.status:<8}  "
            f"total={format_brl(account.total_amount)}  paid={format_brl(account.paid_amount)}  "
            f"remaining={format_brl(account.remaining_amount)}"
        )


def _echo_divergences(divergences):
    for d in divergences:
        click.echo(
            f"  {d.entity_type} #{d.entity_id} {d.field}: expected={d.expected} actual={d.actual}"
            + (f" (account {d.account_id})" if d.account_id else "")
        )


@ledger_group.command('audit')
@click.option('--account-id', type=int, default=None, help='Limit the sweep to one account')
@click.option('--fix', is_flag=True, help='Apply auto fix to what was found')
@with_appcontext
def audit_cli(account_id, fix):
    """Run the consistency audit."""
    divergences = audit_service.run_audit(account_id)
    if not divergences:
        click.echo("PASS No divergences found.")
        return

    click.echo(f"WARN {len(divergences)} divergence(s) found:")
    _echo_divergences(divergences)
    if not fix:
        return

    result = audit_service.auto_fix(divergences)
    click.echo(f"PASS Fixed {result.fixed} divergence(s).")
    if result.remaining:
        click.echo(f"FAIL {len(result.remaining)} divergence(s) remain:")
        _echo_divergences(result.remaining)
        raise SystemExit(1)


@ledger_group.command('sync-job')
@click.option('--once', is_flag=True, help='Run a single pass and exit')
@click.option('--interval', type=int, default=None, help='Minutes between runs (default SYNC_JOB_INTERVAL_MINUTES)')
@click.option('--no-fix', is_flag=True, help='Report only')
@with_appcontext
def sync_job_cli(once, interval, no_fix):
    """Periodic audit + auto fix."""
    if once:
        report = audit_service.run_sync_job(fix=not no_fix)
        click.echo(
            f"PASS Sync complete: {len(report.divergences)} found, {report.fixed} fixed, "
            f"{len(report.remaining)} remaining."
        )
        return

    interval = interval or current_app.config.get("SYNC_JOB_INTERVAL_MINUTES", 30)
    click.echo(f"START Ledger sync every {interval} minute(s). Ctrl+C to stop.")
    try:
        audit_service.run_sync_loop(interval_minutes=interval, fix=not no_fix)
    except KeyboardInterrupt:
        click.echo("STOP Ledger sync stopped.")


@click.group('events')
def events_group():
    """Reconciliation event outbox."""


@events_group.command('pending')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def pending_events_cli(limit):
    events = notification_service.pending_events(limit)
    if not events:
        click.echo("No pending events.")
        return
    for event in events:
        click.echo(
            f"{event.event_id}  {event.event_type:<18}  attempts={event.attempts}  "
            f"last_error={event.last_error or '-'}"
        )


@events_group.command('redeliver')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def redeliver_events_cli(limit):
    """Retry delivery of undelivered events."""
    delivered, failed = notification_service.redeliver_pending(limit)
    click.echo(f"PASS Delivered {delivered} event(s), {failed} still failing.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(events_group)
