# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/hwpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Customer accounts:
# - python -m flask customers list [--all]
#   List AR customer accounts with balances and limits.
# - python -m flask customers create --code C-0001 --name "Dela Cruz Construction" --limit-cents 5000000
#   Open an AR customer account.
#
# Ledger integrity:
# - python -m flask ledger check
#   Replay every AR ledger and shift, pair sales with charges. Exit code 1 on any mismatch.
# - python -m flask ledger recompute --customer-id 3 [--repair]
#   Replay one customer's ledger; --repair overwrites the cached balance.
#
# Shifts:
# - python -m flask shifts list [--status ACTIVE] [--limit 20]
#   List recent shifts with cash totals and variance.
#
# Inventory:
# - python -m flask inventory retry-pending [--limit 100]
#   Retry inventory requests that failed after a sale committed.

import json
import sys

import click
from flask.cli import with_appcontext

from .errors import HwposError, LedgerIntegrityError
from .extensions import db
from .models import Shift
from .services import ar_ledger_service, collaborators, customer_service, reconciliation_service


def _cents(value: int | None) -> str:
    if value is None:
        return "-"
    return f"{value / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    click.echo("START Initializing hwpos database...")
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


@click.group('customers')
def customers_group():
    """AR customer account commands."""


@customers_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive accounts')
@with_appcontext
def list_customers(include_inactive):
    """List AR customer accounts."""
    customers = customer_service.list_customers(active_only=not include_inactive, limit=1000)

    if not customers:
        click.echo("No customer accounts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Code':<12} {'Name':<30} {'Balance':>14} {'Limit':>14} {'Active':>8}")
    click.echo("="*90)

    for c in customers:
        active_str = "Yes" if c.is_active else "No"
        click.echo(
            f"{c.id:<5} {c.customer_code:<12} {c.customer_name[:30]:<30} "
            f"{_cents(c.current_balance_cents):>14} {_cents(c.credit_limit_cents):>14} {active_str:>8}"
        )

    click.echo("="*90 + "\n")


@customers_group.command('create')
@click.option('--code', required=True, help='Customer code (unique)')
@click.option('--name', required=True, help='Customer name')
@click.option('--limit-cents', type=int, default=0, help='Credit limit in cents')
@click.option('--opening-balance-cents', type=int, default=0, help='Opening balance in cents')
@with_appcontext
def create_customer_cli(code, name, limit_cents, opening_balance_cents):
    """Open an AR customer account."""
    try:
        customer = customer_service.create_customer(
            customer_code=code,
            customer_name=name,
            credit_limit_cents=limit_cents,
            opening_balance_cents=opening_balance_cents,
        )
    except HwposError as e:
        click.echo(f"FAIL {e.message}")
        sys.exit(1)
    click.echo(f"PASS Created customer {customer.customer_code} (ID: {customer.id})")


@click.group('ledger')
def ledger_group():
    """Ledger integrity commands."""


@ledger_group.command('check')
@with_appcontext
def ledger_check():
    """Replay all ledgers and shifts; report mismatches without fixing them."""
    report = reconciliation_service.run_integrity_check()

    for section in ("customer_balances", "sale_charges", "shift_totals"):
        problems = report[section]
        status = "PASS" if not problems else "FAIL"
        click.echo(f"{status} {section}: {len(problems)} problem(s)")
        for problem in problems:
            click.echo("    " + json.dumps(problem, sort_keys=True, default=str))

    if not report["ok"]:
        sys.exit(1)


@ledger_group.command('recompute')
@click.option('--customer-id', type=int, required=True, help='Customer account ID')
@click.option('--repair', is_flag=True, help='Overwrite the cached balance with the replayed one')
@with_appcontext
def ledger_recompute(customer_id, repair):
    """Replay one customer's AR ledger."""
    if repair:
        click.confirm(
            "WARN This overwrites the cached balance with the replayed value. Continue?",
            abort=True,
        )
    try:
        check = ar_ledger_service.recompute_balance(customer_id, repair=repair)
    except LedgerIntegrityError as e:
        click.echo(f"FAIL {e.message}")
        click.echo("    " + json.dumps(e.details, sort_keys=True))
        sys.exit(1)
    except HwposError as e:
        click.echo(f"FAIL {e.message}")
        sys.exit(1)

    if check.repaired:
        click.echo(
            f"PASS Balance repaired: {_cents(check.cached_balance_cents)} -> "
            f"{_cents(check.replayed_balance_cents)}"
        )
    else:
        click.echo(
            f"PASS Ledger replays to {_cents(check.replayed_balance_cents)} "
            f"over {check.entry_count} entr{'y' if check.entry_count == 1 else 'ies'}"
        )


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--status', type=click.Choice(['ACTIVE', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max rows')
@with_appcontext
def list_shifts(status, limit):
    """List recent shifts."""
    q = db.session.query(Shift)
    if status:
        q = q.filter_by(status=status)
    shifts = q.order_by(Shift.id.desc()).limit(limit).all()

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*96)
    click.echo(
        f"{'ID':<5} {'Cashier':<8} {'Status':<8} {'Start cash':>12} {'Cash':>12} "
        f"{'Sales':>12} {'Txns':>6} {'Difference':>12}"
    )
    click.echo("="*96)

    for s in shifts:
        click.echo(
            f"{s.id:<5} {s.cashier_id:<8} {s.status:<8} {_cents(s.starting_cash_cents):>12} "
            f"{_cents(s.total_cash_cents):>12} {_cents(s.total_sales_cents):>12} "
            f"{s.transaction_count:>6} {_cents(s.cash_difference_cents):>12}"
        )

    click.echo("="*96 + "\n")


@click.group('inventory')
def inventory_group():
    """Inventory collaborator commands."""


@inventory_group.command('retry-pending')
@click.option('--limit', type=int, default=100, help='Max requests to retry')
@with_appcontext
def retry_pending(limit):
    """Retry inventory requests queued after failed calls."""
    result = collaborators.retry_pending_requests(limit=limit)
    click.echo(
        f"PASS Retried {result['attempted']} request(s): "
        f"{result['succeeded']} succeeded, {result['failed']} still pending"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(inventory_group)
