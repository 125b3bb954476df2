# Overview: Flask CLI command groups for bootstrap, provisioning, and follow-up of stuck payments.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init --org "Corner Shop" --org-code SHOP --owner-username owner
#   Idempotent bootstrap: creates the organization and its owner account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --org-id 1 --username till1 --password "..." --role cashier
#
# Products:
# - python -m flask products create --org-id 1 --name "Milk 500ml" --price-cents 6500 --stock 40
#
# Transactions:
# - python -m flask transactions pending --older-than-minutes 10
#   List mobile payments still waiting for a callback (candidates for manual follow-up).

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, User
from .permissions import VALID_ROLES, ROLE_OWNER
from .services.auth_service import create_user, PasswordValidationError
from .services.catalog_service import create_organization, create_product
from .services.history_service import list_stuck_pending
from .time_utils import to_utc_z
from .validation import ValidationError


def _resolve_org(org_id):
    if org_id:
        return db.session.query(Organization).filter_by(id=org_id).first()
    return db.session.query(Organization).order_by(Organization.id).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--owner-username', default='owner', help='Owner username')
@click.option('--owner-password', prompt=True, hide_input=True, confirmation_prompt=True, help='Owner password')
@with_appcontext
def init_system(org_name, org_code, owner_username, owner_password):
    """
    Initialize the tenant root and its owner account.

    Safe to re-run: existing organization and owner are reused.
    """
    click.echo("START Initializing system...")

    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        try:
            org = create_organization(org_name, org_code)
        except ValidationError as e:
            raise click.ClickException(str(e))
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    owner = db.session.query(User).filter_by(username=owner_username).first()
    if owner:
        click.echo(f"PASS Using existing user: {owner.username} (role: {owner.role})")
    else:
        try:
            owner = create_user(owner_username, owner_password, org.id, role=ROLE_OWNER)
        except (PasswordValidationError, ValueError) as e:
            raise click.ClickException(f"Failed to create owner: {e}")
        click.echo(f"PASS Created owner: {owner.username}")

    click.echo("DONE System initialized.")


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
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(org_id, username, password, role):
    """Create a staff account within an organization."""
    org = _resolve_org(org_id)
    if not org:
        raise click.ClickException("Organization not found. Run 'python -m flask system init' first.")

    try:
        user = create_user(username, password, org.id, role=role)
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except ValueError as e:
        raise click.ClickException(f"Failed to create user: {e}")

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")
    click.echo(f"     Organization: {org.name} (ID: {org.id})")


@click.group('products')
def products_group():
    """Product provisioning commands."""


@products_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--name', prompt=True, help='Product name')
@click.option('--price-cents', type=int, prompt=True, help='Unit price in cents')
@click.option('--stock', type=int, default=0, show_default=True, help='Initial stock quantity')
@click.option('--sku', default=None, help='SKU (unique per organization)')
@click.option('--unit', default='item', show_default=True, help='Unit of measure')
@with_appcontext
def create_product_cli(org_id, name, price_cents, stock, sku, unit):
    org = _resolve_org(org_id)
    if not org:
        raise click.ClickException("Organization not found.")

    try:
        product = create_product(
            org_id=org.id,
            name=name,
            price_cents=price_cents,
            stock_quantity=stock,
            sku=sku,
            unit=unit,
        )
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS Created product: {product.name} (ID: {product.id}, "
        f"price: {product.price_cents}c, stock: {product.stock_quantity})"
    )


@click.group('transactions')
def transactions_group():
    """Transaction follow-up commands."""


@transactions_group.command('pending')
@click.option('--older-than-minutes', type=int, default=10, show_default=True,
              help='Only list payments pending for at least this long')
@with_appcontext
def pending_cli(older_than_minutes):
    """List mobile payments still waiting for a provider callback."""
    stuck = list_stuck_pending(timedelta(minutes=older_than_minutes))
    if not stuck:
        click.echo("PASS No stuck pending payments.")
        return

    click.echo(f"WARN {len(stuck)} pending payment(s):")
    for txn in stuck:
        click.echo(
            f"  #{txn.id} {txn.transaction_code} org={txn.org_id} "
            f"amount={txn.total_amount_cents}c phone={txn.customer_phone} "
            f"created={to_utc_z(txn.created_at)}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(transactions_group)
