# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pdv/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username maria --password "Senha1234" --role seller
#
# Legacy store:
# - python -m flask legacy import export.json [--fallback-user admin]
#   Copy an export of the old local store; safe to rerun.
#
# Credit ledger:
# - python -m flask creditors overdue
#   List creditors whose due date has passed.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PdvError
from .models import User
from .permissions import ROLES, ROLE_ADMIN, ROLE_SELLER, ROLE_TRAINEE, ROLE_STOCK_CLERK
from .services.auth_service import create_user
from .services import credit_service
from .services.migration_service import migrate_legacy_export


DEFAULT_PASSWORD = "Password123"
DEFAULT_USERS = (
    ("admin", ROLE_ADMIN),
    ("vendedor", ROLE_SELLER),
    ("estagiario", ROLE_TRAINEE),
    ("estoquista", ROLE_STOCK_CLERK),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables (if missing) and one default user per role.

    All passwords default to: "Password123"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing PDV...")
    db.create_all()

    for username, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"PASS User exists: {username}")
            continue
        create_user(username, DEFAULT_PASSWORD, role)
        click.echo(f"PASS Created user: {username} ({role})")

    click.echo("DONE Initialization complete")


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

    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<12} {status}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), default=ROLE_SELLER, show_default=True)
@with_appcontext
def create_user_command(username, password, role):
    try:
        user = create_user(username, password, role)
    except PdvError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('legacy')
def legacy_group():
    """Legacy local store import."""


@legacy_group.command('import')
@click.argument('export_file', type=click.File('r', encoding='utf-8'))
@click.option('--fallback-user', default='admin', show_default=True,
              help='Username stamped on records whose legacy operator is unknown')
@with_appcontext
def import_legacy(export_file, fallback_user):
    """Copy a JSON export of the old local store into the database."""
    try:
        export = json.load(export_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON export: {e}")

    user = db.session.query(User).filter_by(username=fallback_user).first()
    if user is None:
        raise click.ClickException(f"Fallback user {fallback_user!r} not found (run `flask system init`)")

    try:
        report = migrate_legacy_export(export, fallback_user_id=user.id)
    except PdvError as e:
        raise click.ClickException(e.message)

    for result in report.collections:
        line = f"{result.status.upper():<8} {result.name:<18} migrated={result.migrated} skipped={result.skipped}"
        if result.error:
            line += f"  error={result.error}"
        click.echo(line)
    for warning in report.warnings:
        click.echo(f"WARN {warning}")

    if not report.ok:
        raise click.ClickException("Import stopped; fix the failing collection and rerun")
    click.echo("PASS Import complete")


@click.group('creditors')
def creditors_group():
    """Credit ledger inspection."""


@creditors_group.command('overdue')
@with_appcontext
def list_overdue():
    creditors = credit_service.list_creditors(status="overdue")
    if not creditors:
        click.echo("No overdue creditors")
        return
    for creditor in creditors:
        click.echo(
            f"#{creditor.id:<5} {creditor.customer_name:<30} "
            f"due {creditor.due_date:%Y-%m-%d}  remaining {creditor.remaining_amount_cents / 100:.2f}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(legacy_group)
    app.cli.add_command(creditors_group)
