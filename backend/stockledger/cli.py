# Overview: Flask CLI command groups for ledger audits, alert sweeps and cash repair.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockledger (PowerShell: $env:FLASK_APP="stockledger").
# - Use: python -m flask <group> <command> [options]
#
# Ledger:
# - python -m flask ledger verify [--product-id 1]
#   Report products whose cached stock drifted from initial_stock + movements.
#
# Alerts:
# - python -m flask alerts refresh
#   Sweep every product and expiration batch; dedup keeps it idempotent.
#
# Cash sessions:
# - python -m flask cash current
#   Show the session holding the drawer.
# - python -m flask cash recalc 3
#   Recompute a session's totals from the sale history.
# - python -m flask cash sessions --limit 20
#   List recent sessions.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import alert_service, cash_session_service, inventory_service
from .services.errors import LedgerError


def _money(cents):
    if cents is None:
        return "-"
    return f"{cents / 100:.2f}"


@click.group('system')
def system_group():
    """System repair commands."""


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
    """Stock ledger audits."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, help='Check a single product')
@with_appcontext
def verify_ledger_cli(product_id):
    """
    Check stock == initial_stock + SUM(quantity_delta) for every product.

    Exits with status 1 when drift is found.
    """
    drift = inventory_service.verify_stock_ledger(product_id=product_id)
    if not drift:
        click.echo("PASS Stock ledger is consistent.")
        return

    click.echo(f"FAIL {len(drift)} product(s) drifted:")
    click.echo(f"{'ID':<6} {'SKU':<20} {'Cached':>8} {'Ledger':>8} {'Diff':>8}")
    for row in drift:
        click.echo(
            f"{row['product_id']:<6} {row['sku']:<20} {row['cached_stock']:>8} "
            f"{row['ledger_stock']:>8} {row['difference']:>+8}"
        )
    raise SystemExit(1)


@click.group('alerts')
def alerts_group():
    """Alert sweeps."""


@alerts_group.command('refresh')
@with_appcontext
def refresh_alerts_cli():
    """Evaluate every stock level and expiration batch."""
    result = alert_service.refresh_alerts()
    click.echo(
        f"Created {result['stock_notifications']} stock and "
        f"{result['expiration_notifications']} expiration notification(s)."
    )


@click.group('cash')
def cash_group():
    """Cash session inspection and repair."""


@cash_group.command('current')
@with_appcontext
def current_session_cli():
    """Show the session holding the drawer."""
    session = cash_session_service.get_current_session()
    if session is None:
        click.echo("No cash session is open.")
        return
    click.echo(
        f"Session {session.id} ({session.status}) cashier={session.cashier_name or '-'} "
        f"opened={str(session.start_time)[:19]} opening={_money(session.opening_amount_cents)} "
        f"sales={_money(session.total_sales_cents)} transactions={session.total_transactions}"
    )


@cash_group.command('recalc')
@click.argument('session_id', type=int)
@with_appcontext
def recalc_session_cli(session_id):
    """Recompute a session's totals from the sale history."""
    try:
        session = cash_session_service.recalculate_totals(session_id)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"Session {session.id}: sales={_money(session.total_sales_cents)} "
        f"transactions={session.total_transactions} expected={_money(session.expected_amount_cents)} "
        f"difference={_money(session.difference_cents)}"
    )


@cash_group.command('sessions')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(limit):
    """List recent cash sessions."""
    sessions = cash_session_service.get_session_history(limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Status':<11} {'Cashier':<18} {'Opened':<20} {'Expected':>10} {'Actual':>10} {'Diff':>10}")
    click.echo("="*100)

    for session in sessions:
        click.echo(
            f"{session.id:<5} {session.status:<11} {(session.cashier_name or '-')[:18]:<18} "
            f"{str(session.start_time)[:19]:<20} {_money(session.expected_amount_cents):>10} "
            f"{_money(session.actual_amount_cents):>10} {_money(session.difference_cents):>10}"
        )

    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(alerts_group)
    app.cli.add_command(cash_group)
