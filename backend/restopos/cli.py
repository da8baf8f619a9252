# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/restopos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "restopos:create_app" (PowerShell: $env:FLASK_APP="restopos:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables and a default admin (PIN 1234) if no users exist.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Staff:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create-staff --username budi --role cashier --pin 1234
#   Create a staff account (prompts if options are omitted).
#
# Charges:
# - python -m flask charges refresh
#   Re-apply current standing charges to every open order.
#
# Print queue:
# - python -m flask print list [--status failed] [--limit 20]
#   List recent print jobs.
# - python -m flask print retry 42
#   Clone failed job 42 as a new pending job.
#
# Shifts:
# - python -m flask shifts state
#   Show the open shift with live totals and the last closed shift.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .models.printing import VALID_PRINT_STATUSES
from .services import auth_service
from .services import charge_service
from .services import print_service
from .services import shift_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and a default admin account.

    Idempotent: existing tables and users are left alone.

    SECURITY: Change the default PIN immediately in production!
    """
    click.echo("START Initializing restaurant POS...")
    db.create_all()
    click.echo("PASS Tables created")

    if db.session.query(User).count() > 0:
        click.echo("WARN  Users already exist, skipping default admin")
        return

    try:
        auth_service.create_staff_user("admin", ROLE_ADMIN, pin="1234", full_name="Administrator")
    except auth_service.UserError as e:
        click.echo(f"FAIL Failed to create admin: {str(e)}")
        return
    click.echo("PASS Created user: admin with role 'admin' (PIN 1234)")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """Staff inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return

    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Role':<10} {'Active':<6}")
    click.echo("-" * 70)
    for user in users:
        click.echo(
            f"{user.id:<5} {user.username:<20} {(user.full_name or ''):<25} "
            f"{user.role:<10} {'yes' if user.is_active else 'no':<6}"
        )


@users_group.command('create-staff')
@click.option('--username', prompt=True, help='Username')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='4-digit PIN')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_staff_cli(username, role, pin, full_name):
    """
    Create a staff account.

    The PIN authorizes voids, cancellations and shift handovers, and is
    stored as a bcrypt hash.
    """
    if not auth_service.is_valid_pin(pin):
        click.echo("FAIL PIN must be exactly 4 digits")
        return
    try:
        user = auth_service.create_staff_user(username, role, pin=pin, full_name=full_name)
    except auth_service.UserError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")
    click.echo("SECURITY PIN securely hashed with bcrypt")


@click.group('charges')
def charges_group():
    """Standing charge maintenance."""


@charges_group.command('refresh')
@with_appcontext
def refresh_charges():
    """Recalculate every open order against the current standing charges."""
    try:
        count = charge_service.refresh_open_orders()
    except Exception:
        current_app.logger.exception("Charge refresh failed")
        click.echo("FAIL Charge refresh failed, no orders were changed")
        raise SystemExit(1)
    click.echo(f"PASS Recalculated {count} open order(s)")


@click.group('print')
def print_group():
    """Print queue inspection and retry."""


@print_group.command('list')
@click.option('--status', type=click.Choice(list(VALID_PRINT_STATUSES)), default=None, help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max jobs to show')
@with_appcontext
def list_jobs(status, limit):
    """List recent print jobs."""
    jobs = print_service.list_print_jobs(status=status, limit=limit)
    if not jobs:
        click.echo("No print jobs found")
        return

    click.echo(f"{'ID':<6} {'Printer':<8} {'Status':<10} {'Retries':<8} {'Error'}")
    click.echo("-" * 60)
    for job in jobs:
        click.echo(f"{job.id:<6} {job.printer_id:<8} {job.status:<10} {job.retry_count:<8} {job.error_message or ''}")


@print_group.command('retry')
@click.argument('job_id', type=int)
@with_appcontext
def retry_job(job_id):
    """Re-queue a failed print job."""
    try:
        job = print_service.retry_print_job(job_id)
    except print_service.PrintQueueError as e:
        click.echo(f"FAIL {str(e)}")
        raise SystemExit(1)
    click.echo(f"PASS Queued print job {job.id} (retry of {job.payload.get('retry_of')})")


@click.group('shifts')
def shifts_group():
    """Cashier shift inspection."""


def _echo_report(label: str, data: dict) -> None:
    click.echo(f"\n{label}: #{data['id']} opened {data['opened_at']} by user {data['opened_by']}")
    sales = data.get("sales_summary")
    if sales:
        click.echo(
            f"   sales total={sales['total']} cash={sales['cash']} card={sales['card']} "
            f"qris={sales['qris']} transfer={sales['transfer']} count={sales['transaction_count']}"
        )
    movements = data.get("cash_movements")
    if movements:
        click.echo(f"   cash in={movements['total_in']} cash out={movements['total_out']}")


@shifts_group.command('state')
@with_appcontext
def shift_state():
    """Show the open shift and the last closed shift."""
    state = shift_service.get_shift_state()
    if state["open_shift"]:
        _echo_report("OPEN", state["open_shift"])
    else:
        click.echo("No open shift")
    if state["last_closed_shift"]:
        _echo_report("LAST CLOSED", state["last_closed_shift"])


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(charges_group)
    app.cli.add_command(print_group)
    app.cli.add_command(shifts_group)
