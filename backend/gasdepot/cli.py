# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/gasdepot/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
# - python -m flask system init [--warehouse "Main Depot"]
#   Idempotent bootstrap: default warehouse, configuration defaults, default staff users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role repartidor]
#   List users with role and active status.
# - python -m flask users create --username ana --full-name "Ana Torres" --password "Password123" --role base
#   Create a user (prompts if options are omitted).
# - python -m flask users deactivate ana
#   Deactivate a user and revoke their sessions.
#
# Loyalty:
# - python -m flask loyalty reconcile
#   Compare every cached balance with the settled ledger sum.
#
# Maintenance:
# - python -m flask maintenance purge-throttle
#   Delete expired login-throttle entries.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Warehouse
from .models.auth import ROLE_ACCOUNTING, ROLE_DELIVERY, ROLE_DISPATCH, ROLE_MANAGER, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import loyalty_service, login_throttle_service, session_service, settings_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--warehouse', 'warehouse_name', default='Main Depot', help='Default warehouse name')
@click.option('--warehouse-code', default='MAIN', help='Default warehouse code')
@with_appcontext
def init_system(warehouse_name, warehouse_code):
    """
    Initialize GasDepot: default warehouse, configuration defaults and staff users.

    Creates:
    - Default warehouse (if none is flagged default)
    - Missing configuration keys with their default values
    - Users: gerente, base, repartidor, contabilidad
    - All passwords default to: "Password123"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing GasDepot...")

    # 1. Ensure default warehouse exists
    warehouse = db.session.query(Warehouse).filter_by(is_default=True).first()
    if not warehouse:
        warehouse = Warehouse(name=warehouse_name, code=warehouse_code, is_default=True, is_active=True)
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created default warehouse: {warehouse.name} (ID: {warehouse.id})")
    else:
        click.echo(f"PASS Using existing warehouse: {warehouse.name} (ID: {warehouse.id})")

    # 2. Configuration defaults
    added = settings_service.ensure_defaults_seeded()
    db.session.commit()
    click.echo(f"PASS Configuration defaults seeded ({added} new keys)")

    # 3. Default staff users
    click.echo("\nUSERS Creating default users...")
    default_password = "Password123"

    default_users = [
        ("gerente", "Store Manager", ROLE_MANAGER),
        ("base", "Dispatch Desk", ROLE_DISPATCH),
        ("repartidor", "Delivery Driver", ROLE_DELIVERY),
        ("contabilidad", "Accounting", ROLE_ACCOUNTING),
    ]

    for username, full_name, role in default_users:
        existing = db.session.query(User).filter_by(username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username=username,
                full_name=full_name,
                password=default_password,
                role=role,
                default_warehouse_id=warehouse.id,
            )
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{username}': {str(e)}")
        except Exception as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("\n" + "="*60)
    click.echo("DONE GasDepot Initialized Successfully!")
    click.echo("="*60)
    click.echo(f"\nDefault warehouse: {warehouse.name} (ID: {warehouse.id})")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for username, _, role in default_users:
        click.echo(f"   {username:<13} ({role}) / {default_password}")
    click.echo("")


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
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their role."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Role':<14} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.full_name:<30} {user.role:<14} {active_str}")

    click.echo("="*90 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--email', default=None, help='Email address')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(username, full_name, password, role, email, phone):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        warehouse = db.session.query(Warehouse).filter_by(is_default=True).first()
        user = create_user(
            username=username,
            full_name=full_name,
            password=password,
            role=role,
            email=email,
            phone=phone,
            default_warehouse_id=warehouse.id if warehouse else None,
        )
        click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit")
    except Exception as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user_cli(username):
    """Deactivate a user and revoke all their sessions."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    user.is_active = False
    db.session.commit()
    revoked = session_service.revoke_all_user_sessions(user.id)
    click.echo(f"PASS Deactivated '{username}' and revoked {revoked} session(s)")


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger inspection."""


@loyalty_group.command('reconcile')
@with_appcontext
def reconcile_loyalty():
    """
    Check that every customer's cached loyalty_points equals the sum of
    their settled (non-pending) ledger rows. Exits non-zero on mismatch.
    """
    mismatches = loyalty_service.reconcile()

    if not mismatches:
        click.echo("PASS All loyalty balances match the ledger")
        return

    click.echo(f"FAIL {len(mismatches)} customer(s) out of balance:")
    click.echo(f"{'Customer':<10} {'Cached':<10} {'Ledger'}")
    for row in mismatches:
        click.echo(f"{row['customer_user_id']:<10} {row['cached']:<10} {row['ledger']}")
    raise SystemExit(1)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-throttle')
@with_appcontext
def purge_throttle():
    """Delete login-throttle entries whose window and lock have both expired."""
    deleted = login_throttle_service.purge_expired()
    click.echo(f"PASS Deleted {deleted} expired throttle entr{'y' if deleted == 1 else 'ies'}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(maintenance_group)
