# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-password secret]
#   Idempotent bootstrap: tables, admin user, permissions, main stock, money boxes, settings.
# - python -m flask system check
#   Report missing tables/columns.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username cashier1 --password secret1 --role user
#
# Stock ledger:
# - python -m flask stock recompute [--product-id 7]
#   Rewrite products.current_stock from the movement ledger.
#
# Licensing:
# - python -m flask license fingerprint
# - python -m flask license check [--force-remote]
# - python -m flask license diagnose

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import auth_service, schema_service, stock_movement_service
from .services.auth_service import PasswordValidationError
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-password', default=None, help='Password for the admin user (default: ADMIN_DEFAULT_PASSWORD)')
@with_appcontext
def init_system(admin_password):
    """
    Create tables and seed a fresh install. Safe to re-run.

    SECURITY: change the admin password after the first login.
    """
    password = admin_password or current_app.config.get("ADMIN_DEFAULT_PASSWORD")
    click.echo("START Initializing RetailPOS...")
    try:
        summary = schema_service.bootstrap(admin_password=password)
    except PasswordValidationError as exc:
        raise click.ClickException(str(exc))

    click.echo(f"PASS Admin user {'created' if summary['admin_created'] else 'already present'}")
    click.echo(f"PASS Permissions created: {summary['permissions_created']}")
    click.echo(f"PASS Main stock {'created' if summary['main_stock_created'] else 'already present'}")
    boxes = summary["money_boxes_created"]
    click.echo(f"PASS Money boxes created: {', '.join(boxes) if boxes else 'none'}")
    click.echo(f"PASS Settings created: {summary['settings_created']}")


@system_group.command('check')
@with_appcontext
def check_schema():
    """Report missing tables/columns without changing anything."""
    result = schema_service.check_schema()
    if result["ok"]:
        click.echo("PASS Schema is complete")
        return
    for table in result["missing_tables"]:
        click.echo(f"FAIL Missing table: {table}")
    for column in result["missing_columns"]:
        click.echo(f"FAIL Missing column: {column}")
    raise SystemExit(1)


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and creation."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', default=None)
@click.option('--role', type=click.Choice(auth_service.USER_ROLES), default='user', show_default=True)
@with_appcontext
def create_user_command(username, password, name, role):
    try:
        user = auth_service.create_user(username, password, name=name, role=role)
    except (ValidationError, ConflictError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance."""


@stock_group.command('recompute')
@click.option('--product-id', type=int, default=None, help='Only this product')
@with_appcontext
def recompute_stock(product_id):
    """Rewrite cached product quantities from the movement ledger."""
    changed = stock_movement_service.recompute_product_cache(product_id)
    click.echo(f"PASS Recomputed stock cache; {changed} product(s) corrected")


@click.group('license')
def license_group():
    """Device license inspection."""


@license_group.command('fingerprint')
@with_appcontext
def license_fingerprint():
    click.echo(current_app.extensions["license_service"].generate_fingerprint())


@license_group.command('check')
@click.option('--force-remote', is_flag=True, help='Clear the cache before checking')
@with_appcontext
def license_check(force_remote):
    result = current_app.extensions["license_service"].verify_offline_first(force_remote=force_remote)
    click.echo(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    if not result.get("success"):
        raise SystemExit(1)


@license_group.command('diagnose')
@with_appcontext
def license_diagnose():
    report = current_app.extensions["license_service"].diagnose()
    click.echo(json.dumps(report, indent=2, ensure_ascii=False, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(license_group)
