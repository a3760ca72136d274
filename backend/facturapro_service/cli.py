# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/facturapro_service/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants list
#   List all tenants with their account counts.
# - python -m flask tenants create --name "Acme SL" --admin-name "Ana" --admin-email ana@acme.test
#   Create a tenant together with its first admin (prompts for the password).
#
# Account inspection/bootstrap:
# - python -m flask accounts list [--tenant-id 1]
#   List accounts (profiles) with role and email.
# - python -m flask accounts create --tenant-id 1 --name "Eva" --email eva@acme.test --role employee
#   Provision a user in a tenant (prompts for the password).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant, Account
from .services import rpc_service
from .services.tenant_service import Caller
from .validation import ValidationError, ConflictError, ROLES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' to add a tenant.")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<40} {'Tax ID':<20} {'Accounts'}")
    click.echo("="*80)

    for tenant in tenants:
        account_count = db.session.query(Account).filter_by(tenant_id=tenant.id).count()
        click.echo(f"{tenant.id:<5} {tenant.name:<40} {tenant.tax_id or '-':<20} {account_count}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant (company) name')
@click.option('--tax-id', help='Company tax id')
@click.option('--admin-name', prompt=True, help='Name of the first admin')
@click.option('--admin-email', prompt=True, help='Email of the first admin')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@with_appcontext
def create_tenant_cli(name, tax_id, admin_name, admin_email, password):
    """Create a tenant together with its first admin."""
    try:
        result = rpc_service.register_tenant(None, {
            "tenant_name": name,
            "tax_id": tax_id,
            "admin_name": admin_name,
            "email": admin_email,
            "password": password,
        })
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return

    tenant = result["tenant"]
    click.echo(f"PASS Created tenant: {tenant['name']} (ID: {tenant['id']})")
    click.echo(f"     Admin: {result['account']['email']}")


@click.group('accounts')
def accounts_group():
    """Account inspection and bootstrap commands."""


@accounts_group.command('list')
@click.option('--tenant-id', type=int, help='Filter by tenant ID')
@with_appcontext
def list_accounts(tenant_id):
    """List accounts with their roles."""
    query = db.session.query(Account)
    if tenant_id:
        query = query.filter_by(tenant_id=tenant_id)
    accounts = query.order_by(Account.tenant_id.asc(), Account.name.asc()).all()

    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Tenant':<7} {'Name':<25} {'Email':<35} {'Role'}")
    click.echo("="*90)

    for account in accounts:
        click.echo(f"{account.id:<5} {account.tenant_id:<7} {account.name:<25} {account.email:<35} {account.role}")

    click.echo("="*90 + "\n")


@accounts_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default='employee', show_default=True, help='Role')
@with_appcontext
def create_account_cli(tenant_id, name, email, password, role):
    """
    Provision a user in a tenant.

    Runs the same code path as the provision_account RPC, acting as an admin
    of the tenant.
    """
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        return

    operator = Caller(identity_id=0, tenant_id=tenant.id, role="admin")
    try:
        account = rpc_service.provision_account(operator, {
            "name": name,
            "email": email,
            "password": password,
            "role": role,
        })
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created account: {account['name']} ({account['email']}) with role '{account['role']}'")
    click.echo(f"     Tenant: {tenant.name} (ID: {tenant.id})")
    click.echo("SECURITY Password securely hashed with bcrypt")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(accounts_group)
