# Overview: Flask CLI command groups for bootstrap, user creation, and maintenance.

# backend/farmmarket/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables (idempotent). Use `flask db upgrade` for migrated databases.
#
# Users:
# - python -m flask users create-admin --email admin@farmmarket.local --password "Password123!" --full-name "Admin"
#   Create an administrator (prompts if options are omitted).
# - python -m flask users list [--role farmer]
#
# Maintenance:
# - python -m flask maintenance cleanup-otp
#   Delete expired OTP codes.
# - python -m flask maintenance cleanup-login-attempts
#   Delete login counters whose window and lockout have both passed.
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked sessions.

import click
from flask.cli import with_appcontext

from .errors import MarketError
from .extensions import db
from .models import User
from .models.auth import VALID_ROLES
from .services import auth_service, login_throttle_service, otp_service, session_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables for a fresh database."""
    click.echo("START Initializing marketplace database...")
    db.create_all()
    click.echo("PASS Tables created")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default='Administrator', show_default=True, help='Display name')
@with_appcontext
def create_admin_cli(email, password, full_name):
    """
    Create an administrator account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = auth_service.create_admin(email, password, full_name)
    except MarketError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created admin {user.email} (ID: {user.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), help='Filter by role')
@with_appcontext
def list_users_cli(role):
    """List users with role and status."""
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)
    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        verified = "verified" if user.is_verified else "unverified"
        click.echo(f"{user.id:>5}  {user.email:<40} {user.role:<9} {status:<9} {verified}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-otp')
@with_appcontext
def cleanup_otp_cli():
    deleted = otp_service.cleanup_expired()
    click.echo(f"Deleted {deleted} expired OTP codes.")


@maintenance_group.command('cleanup-login-attempts')
@with_appcontext
def cleanup_login_attempts_cli():
    deleted = login_throttle_service.cleanup_expired_attempts()
    click.echo(f"Deleted {deleted} expired login counters.")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
