# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Registers:
# - python -m flask registers create --code "CAJA-01" --name "Front Counter" --location "Main Floor"
#   Create a new register.
# - python -m flask registers list [--all]
#   List registers and whether a session is open on them.
# - python -m flask registers sessions --status OPEN --limit 20
#   List recent cash sessions with optional filters.
#
# Cashiers:
# - python -m flask cashiers create --name "Ana" --email ana@example.com
# - python -m flask cashiers list

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Cashier, CashRegister, CashSession
from .services import cash_session_service
from .validation import PosError


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:+.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('registers')
def registers_group():
    """Register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--code', required=True, help='Register code, e.g. CAJA-01')
@click.option('--name', required=True, help='Register name')
@click.option('--location', help='Location in store')
@with_appcontext
def create_register_cli(code, name, location):
    """
    Create a new register.

    Example:
        flask registers create --code CAJA-01 --name "Front Counter" --location "Main Floor"
    """
    try:
        register = cash_session_service.create_register(code=code, name=name, location=location)
    except PosError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created register: {register.code} - {register.name}")
    click.echo(f"   Location: {register.location or 'Not specified'}")
    click.echo(f"   Register ID: {register.id}")


@registers_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(show_all):
    """
    List registers.

    Example:
        flask registers list
        flask registers list --all
    """
    registers = cash_session_service.get_registers(active_only=not show_all)

    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Code':<12} {'Name':<25} {'Location':<20} {'Active':<8} {'Session'}")
    click.echo("=" * 90)

    for register in registers:
        open_session = cash_session_service.get_open_session(register.id)
        status = f"OPEN #{open_session.id}" if open_session else "-"
        active_str = "Yes" if register.is_active else "No"
        location = register.location or "-"

        click.echo(f"{register.id:<5} {register.code:<12} {register.name:<25} {location:<20} {active_str:<8} {status}")

    click.echo("=" * 90 + "\n")


@registers_group.command('sessions')
@click.option('--register-id', type=int, help='Filter by register ID')
@click.option('--cashier-id', type=int, help='Filter by cashier ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(register_id, cashier_id, status, limit):
    """
    List cash sessions.

    Example:
        flask registers sessions
        flask registers sessions --register-id 1
        flask registers sessions --status OPEN
    """
    sessions = cash_session_service.list_sessions(
        register_id=register_id,
        cashier_id=cashier_id,
        status=status,
        limit=limit,
    )

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "=" * 110)
    click.echo(f"{'ID':<5} {'Register':<12} {'Cashier':<18} {'Status':<8} {'Opened':<20} {'Sales':<7} {'Variance':<12}")
    click.echo("=" * 110)

    for session in sessions:
        register = db.session.get(CashRegister, session.register_id)
        cashier = db.session.get(Cashier, session.cashier_id)

        click.echo(
            f"{session.id:<5} {register.code if register else 'Unknown':<12} "
            f"{cashier.name if cashier else 'Unknown':<18} {session.status:<8} "
            f"{str(session.opened_at)[:19]:<20} {session.sales_count:<7} {_money(session.variance_cents):<12}"
        )

    click.echo("=" * 110 + "\n")


@click.group('cashiers')
def cashiers_group():
    """Cashier bootstrap commands."""


@cashiers_group.command('create')
@click.option('--name', required=True, help='Cashier display name')
@click.option('--email', help='Unique email (optional)')
@with_appcontext
def create_cashier_cli(name, email):
    try:
        cashier = cash_session_service.create_cashier(name=name, email=email)
    except PosError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created cashier: {cashier.name} (ID: {cashier.id})")


@cashiers_group.command('list')
@with_appcontext
def list_cashiers_cli():
    cashiers = db.session.query(Cashier).order_by(Cashier.name).all()
    if not cashiers:
        click.echo("No cashiers found.")
        return
    for cashier in cashiers:
        current = db.session.query(CashSession).filter_by(cashier_id=cashier.id, status="OPEN").first()
        session_str = f"session #{current.id} open" if current else "no open session"
        active_str = "active" if cashier.is_active else "inactive"
        click.echo(f"{cashier.id:<5} {cashier.name:<25} {cashier.email or '-':<30} {active_str:<9} {session_str}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(cashiers_group)
